from __future__ import annotations
from datetime import datetime, timezone
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from quizguard.config import settings
from quizguard.db import get_session, ping

router = APIRouter(tags=["system"])
log = structlog.get_logger()

@router.get("/health")
async def health(request: Request):
    """Liveness only: answers as long as the process is serving."""
    return {
        "status": "ok",
        "env": settings.environment,
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.state.request_id,
    }

@router.get("/ready")
async def ready(session: AsyncSession = Depends(get_session)):
    try:
        database = await ping(session)
    except (SQLAlchemyError, OSError):
        log.exception("readiness_check_failed")
        database = False
    body = {"status": "ready" if database else "unavailable", "checks": {"database": database}}
    return JSONResponse(body, status_code=200 if database else 503)

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "display_name": settings.app_display_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
        "env": settings.environment,
    }
