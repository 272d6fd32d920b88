from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, BigInteger, Boolean, Float, DateTime, Index, Uuid, func, text
from quizguard.db import Base, JSONType

LIVE_STATES = ("pending-payment", "active")
TERMINAL_STATES = ("completed", "auto-ended", "abandoned")

_LIVE_PREDICATE = text("state IN ('pending-payment', 'active')")

class AssessmentSession(Base):
    """
    One participant's single attempt at one quiz.
    Lifecycle: pending-payment -> active -> completed | auto-ended | abandoned.
    `flagged` annotates a completed/auto-ended record after a reject verdict.
    """
    __tablename__ = "assessment_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    participant_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    question_count: Mapped[int] = mapped_column(Integer, nullable=False)

    state: Mapped[str] = mapped_column(String(16), nullable=False, default="pending-payment")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deadline_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    end_reason: Mapped[str | None] = mapped_column(String(48), nullable=True)

    answers: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    violations: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    violation_counts: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    # Flood control, scoped to this session
    rate_window_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rate_window_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dropped_violation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    risk_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    risk_recommendation: Mapped[str | None] = mapped_column(String(16), nullable=True)

    client_meta: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    # Snapshot of the quiz policy at start; verdicts never re-read the catalog
    policy: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    payment_correlation_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # At most one live attempt per (participant, quiz)
        Index(
            "uq_sessions_one_live_attempt",
            "participant_id", "quiz_id",
            unique=True,
            postgresql_where=_LIVE_PREDICATE,
            sqlite_where=_LIVE_PREDICATE,
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
