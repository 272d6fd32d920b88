from __future__ import annotations
import logging, sys
import structlog
import structlog.stdlib
from quizguard.config import settings

def _renderer(environment: str):
    # Human-readable lines locally, one JSON object per line everywhere else
    if environment == "dev":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer()

def configure_logging(level: str | int | None = None, environment: str | None = None) -> None:
    level = level if level is not None else settings.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    renderer = _renderer(environment or settings.environment)

    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
    ]
    structlog.configure(
        processors=[
            *shared,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )

    # uvicorn, sqlalchemy and rq log through the stdlib; render them the same way
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared,
    ))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
