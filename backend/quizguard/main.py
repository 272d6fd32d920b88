from __future__ import annotations
import time
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from quizguard.config import settings
from quizguard.db import engine
from quizguard.errors import QuizguardError
from quizguard.logging_setup import configure_logging
from quizguard.routes.ledger import router as ledger_router
from quizguard.routes.sessions import router as sessions_router
from quizguard.routes.system import router as system_router
from quizguard.routes.wallet import router as wallet_router

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    yield
    await engine.dispose()
    log.info("shutdown")

def create_app() -> FastAPI:
    app = FastAPI(
        title=f"{settings.app_display_name} API",
        version=settings.app_version,
        lifespan=lifespan,
        description="Timed quiz sessions with escrowed entry fees and integrity review",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    for router in (system_router, sessions_router, wallet_router, ledger_router):
        app.include_router(router)

    @app.exception_handler(QuizguardError)
    async def domain_error(request: Request, exc: QuizguardError):
        # Routes translate the errors they expect; this catches the rest
        log.warning("domain_error_unhandled", error=type(exc).__name__, path=request.url.path)
        return JSONResponse(
            {"detail": {"error": type(exc).__name__, "message": str(exc), **exc.context}},
            status_code=exc.status_code,
        )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid
        structlog.contextvars.bind_contextvars(request_id=rid)
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
            log.info(
                "request_completed",
                method=request.method, path=request.url.path, status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers["X-Request-ID"] = rid
        return response

    return app

app = create_app()
