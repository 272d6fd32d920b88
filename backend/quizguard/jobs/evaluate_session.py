from __future__ import annotations
import asyncio
from uuid import UUID
import structlog
from quizguard.db import SessionLocal
from quizguard.errors import SessionNotFound, SessionNotTerminal
from quizguard.services import engine

log = structlog.get_logger()

async def _run(session_id: str):
    async with SessionLocal() as db:
        try:
            verdict = await engine.get_verdict(db, session_id=UUID(session_id))
        except (SessionNotFound, SessionNotTerminal) as e:
            log.warning("reevaluation_skipped", session_id=session_id, reason=str(e))
            return None
        log.info(
            "reevaluation_done",
            session_id=session_id, risk_score=verdict.risk_score, recommendation=verdict.recommendation,
        )
        return verdict

def evaluate_session(session_id: str):
    """RQ entrypoint: recompute and store the risk verdict for a finished session."""
    return asyncio.run(_run(session_id))
