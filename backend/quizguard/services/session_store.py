from __future__ import annotations
from datetime import datetime
from uuid import UUID
import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quizguard.errors import DuplicateSession, SessionNotFound, SessionTerminal
from quizguard.models.session import AssessmentSession, LIVE_STATES, TERMINAL_STATES
from quizguard.schemas.quiz import QuizSnapshot
from quizguard.schemas.risk import RiskVerdict
from quizguard.services.deadlines import as_utc, compute_deadline, elapsed_ms, is_overdue
from quizguard.services.scoring import ScoreCard

log = structlog.get_logger()

TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending-payment": ("active",),
    "active": ("completed", "auto-ended", "abandoned"),
}
FLAGGABLE = ("completed", "auto-ended")

# ---------- reads ----------

async def get(
    session: AsyncSession,
    session_id: UUID,
    *,
    participant_id: UUID | None = None,
    for_update: bool = False,
) -> AssessmentSession:
    """Load a session; a session owned by someone else is reported as not found."""
    stmt = select(AssessmentSession).where(AssessmentSession.id == session_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    record = await session.scalar(stmt)
    if not record or (participant_id is not None and record.participant_id != participant_id):
        raise SessionNotFound(f"session {session_id} not found", session_id=str(session_id))
    return record

async def find_live(session: AsyncSession, participant_id: UUID, quiz_id: UUID) -> AssessmentSession | None:
    return await session.scalar(
        select(AssessmentSession)
        .where(
            AssessmentSession.participant_id == participant_id,
            AssessmentSession.quiz_id == quiz_id,
            AssessmentSession.state.in_(LIVE_STATES),
        )
        .execution_options(populate_existing=True)
    )

async def recent_violation_count(session: AsyncSession, participant_id: UUID, since: datetime) -> int:
    """Violations logged at or after `since` across all of a participant's sessions."""
    records = (await session.execute(
        select(AssessmentSession).where(
            AssessmentSession.participant_id == participant_id,
            or_(AssessmentSession.ended_at.is_(None), AssessmentSession.ended_at >= since),
        )
    )).scalars().all()
    cutoff = as_utc(since)
    return sum(
        1
        for r in records
        for v in (r.violations or [])
        if as_utc(datetime.fromisoformat(v["timestamp"])) >= cutoff
    )

# ---------- creation ----------

async def create_pending(
    session: AsyncSession,
    *,
    participant_id: UUID,
    quiz: QuizSnapshot,
    now: datetime,
    client_meta: dict | None = None,
) -> AssessmentSession:
    """
    Claim the (participant, quiz) slot. The partial unique index turns a lost
    race into DuplicateSession; the caller must roll back and resume.
    """
    record = AssessmentSession(
        quiz_id=quiz.id,
        participant_id=participant_id,
        question_count=len(quiz.questions),
        state="pending-payment",
        started_at=now,
        deadline_at=compute_deadline(now, quiz.duration_minutes),
        answers=[],
        violations=[],
        violation_counts={},
        client_meta=dict(client_meta or {}),
        policy=quiz.policy.model_dump(mode="json"),
    )
    session.add(record)
    try:
        await session.flush()
    except IntegrityError as e:
        raise DuplicateSession(
            f"live session already exists for participant {participant_id} on quiz {quiz.id}",
            participant_id=str(participant_id), quiz_id=str(quiz.id),
        ) from e
    return record

# ---------- transitions ----------

def _transition(record: AssessmentSession, to: str) -> None:
    if to not in TRANSITIONS.get(record.state, ()):
        if record.state in TERMINAL_STATES:
            raise SessionTerminal(f"session {record.id} is {record.state}", state=record.state)
        raise ValueError(f"illegal transition {record.state} -> {to}")
    log.info("session_transition", session_id=str(record.id), from_state=record.state, to_state=to)
    record.state = to

def _close(record: AssessmentSession, to: str, now: datetime, reason: str) -> None:
    _transition(record, to)
    record.ended_at = now
    record.duration_ms = elapsed_ms(record.started_at, now)
    record.end_reason = reason

def activate(record: AssessmentSession, now: datetime) -> None:
    """Escrow done (or free quiz): the clock starts now."""
    _transition(record, "active")
    duration = record.deadline_at - record.started_at
    record.started_at = now
    record.deadline_at = now + duration

def complete(record: AssessmentSession, now: datetime, card: ScoreCard) -> None:
    _close(record, "completed", now, "submitted")
    record.answers = card.answers
    record.score = card.score
    record.correct_count = card.correct_count

def auto_end(record: AssessmentSession, now: datetime, reason: str) -> None:
    _close(record, "auto-ended", now, reason)

def abandon(record: AssessmentSession, now: datetime) -> None:
    _close(record, "abandoned", now, "deadline-unattended")

def check_deadline(record: AssessmentSession, now: datetime, *, mutating: bool) -> bool:
    """
    Lazy expiry. Returns True when an overdue active session was just closed:
    auto-ended when the access was a mutation, abandoned when it was a read.
    """
    if record.state != "active" or not is_overdue(record.started_at, record.deadline_at, now):
        return False
    if mutating:
        auto_end(record, now, "deadline")
    else:
        abandon(record, now)
    return True

def apply_verdict(record: AssessmentSession, verdict: RiskVerdict) -> None:
    """Store the verdict; a reject flags completed/auto-ended records. Flags are never cleared."""
    record.risk_score = verdict.risk_score
    record.risk_recommendation = verdict.recommendation
    if verdict.recommendation == "reject" and record.state in FLAGGABLE and not record.flagged:
        record.flagged = True
        log.warning("session_flagged", session_id=str(record.id), risk_score=verdict.risk_score)
