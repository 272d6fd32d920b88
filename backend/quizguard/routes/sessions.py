from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from quizguard.db import get_session
from quizguard.auth_deps import get_participant_id
from quizguard.errors import QuizguardError
from quizguard.schemas.risk import RiskVerdict
from quizguard.schemas.session import (
    SessionPublic, StartSessionResponse, SubmitRequest, SubmitResult, ViolationOutcome, ViolationReport,
)
from quizguard.services import engine

router = APIRouter(tags=["sessions"])

def _http_error(e: QuizguardError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail={"error": type(e).__name__, "message": str(e), **e.context})

@router.post("/quizzes/{quiz_id}/sessions", response_model=StartSessionResponse)
async def start_session(
    quiz_id: UUID,
    request: Request,
    session: AsyncSession = Depends(get_session),
    participant_id: UUID = Depends(get_participant_id),
    user_agent: str | None = Header(default=None, alias="User-Agent"),
    x_client_fingerprint: str | None = Header(default=None, alias="X-Client-Fingerprint"),
    x_client_tz: str | None = Header(default=None, alias="X-Client-Timezone"),
):
    client_meta = {
        "ip_address": request.client.host if request.client else None,
        "user_agent": user_agent or "",
        "fingerprint": x_client_fingerprint,
        "timezone": x_client_tz,
    }
    try:
        return await engine.start_session(session, participant_id=participant_id, quiz_id=quiz_id, client_meta=client_meta)
    except QuizguardError as e:
        raise _http_error(e)

@router.post("/sessions/{session_id}/violations", response_model=ViolationOutcome)
async def record_violation(
    session_id: UUID,
    payload: ViolationReport,
    session: AsyncSession = Depends(get_session),
    participant_id: UUID = Depends(get_participant_id),
):
    try:
        return await engine.record_violation(
            session, session_id=session_id, participant_id=participant_id, kind=payload.kind, detail=payload.detail,
        )
    except QuizguardError as e:
        raise _http_error(e)

@router.post("/sessions/{session_id}/submit", response_model=SubmitResult)
async def submit_session(
    session_id: UUID,
    payload: SubmitRequest,
    session: AsyncSession = Depends(get_session),
    participant_id: UUID = Depends(get_participant_id),
):
    try:
        return await engine.submit_session(session, session_id=session_id, participant_id=participant_id, answers=payload.answers)
    except QuizguardError as e:
        raise _http_error(e)

@router.get("/sessions/{session_id}", response_model=SessionPublic)
async def get_session_record(
    session_id: UUID,
    session: AsyncSession = Depends(get_session),
    participant_id: UUID = Depends(get_participant_id),
):
    try:
        return await engine.get_session(session, session_id=session_id, participant_id=participant_id)
    except QuizguardError as e:
        raise _http_error(e)

@router.get("/sessions/{session_id}/verdict", response_model=RiskVerdict)
async def get_verdict(
    session_id: UUID,
    session: AsyncSession = Depends(get_session),
    participant_id: UUID = Depends(get_participant_id),
):
    try:
        return await engine.get_verdict(session, session_id=session_id, participant_id=participant_id)
    except QuizguardError as e:
        raise _http_error(e)
