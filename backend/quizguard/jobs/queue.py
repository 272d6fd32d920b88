from __future__ import annotations
from functools import lru_cache
from uuid import UUID
import structlog
from redis import Redis
from rq import Queue
from quizguard.config import settings

log = structlog.get_logger()

REEVALUATE_JOB = "quizguard.jobs.evaluate_session.evaluate_session"

@lru_cache(maxsize=1)
def get_queue() -> Queue:
    return Queue("default", connection=Redis.from_url(settings.redis_url))

def enqueue_reevaluation(session_id: UUID) -> None:
    """Schedule a verdict recomputation. Never raises: the verdict is recoverable later."""
    try:
        get_queue().enqueue(REEVALUATE_JOB, str(session_id), job_timeout=60)
    except Exception:
        log.exception("reevaluation_enqueue_failed", session_id=str(session_id))
        return
    log.info("reevaluation_enqueued", session_id=str(session_id))
