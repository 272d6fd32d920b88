from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "quizguard-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "Quizguard")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/quizguard_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # Identity provider tokens (verified only, never issued here)
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_alg: str = os.getenv("JWT_ALG", "HS256")

    # Session lifecycle
    session_grace_seconds: int = int(os.getenv("SESSION_GRACE_SECONDS", "30"))

    # Integrity monitor
    violation_ceiling: int = int(os.getenv("VIOLATION_CEILING", "10"))
    violation_rate_limit: int = int(os.getenv("VIOLATION_RATE_LIMIT", "20"))
    violation_rate_window_seconds: int = int(os.getenv("VIOLATION_RATE_WINDOW_SECONDS", "60"))
    violation_lockout_threshold: int = int(os.getenv("VIOLATION_LOCKOUT_THRESHOLD", "10"))
    violation_lockout_hours: int = int(os.getenv("VIOLATION_LOCKOUT_HOURS", "24"))

    # Risk evaluator timing bounds (seconds per answer)
    min_plausible_answer_seconds: int = int(os.getenv("MIN_PLAUSIBLE_ANSWER_SECONDS", "3"))
    max_plausible_answer_seconds: int = int(os.getenv("MAX_PLAUSIBLE_ANSWER_SECONDS", "300"))

    # Money (integer minor units only)
    min_withdrawal_minor: int = int(os.getenv("MIN_WITHDRAWAL_MINOR", "10000"))

settings = Settings()
