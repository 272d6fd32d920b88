from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, BigInteger, DateTime, ForeignKey, Text, Uuid, func
from quizguard.db import Base, JSONType

# Catalog tables. Authored and approved elsewhere; read-only for the session engine.

class Quiz(Base):
    __tablename__ = "quizzes"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    creator_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")  # draft|pending|approved|rejected|cancelled
    price: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # minor units, 0 = free
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # anti-cheat thresholds, severity overrides, show_results
    settings_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

class Question(Base):
    __tablename__ = "questions"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("quizzes.id", ondelete="CASCADE"), index=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prompt: Mapped[str] = mapped_column(Text(), nullable=False)
    type: Mapped[str] = mapped_column(String(24), nullable=False, default="multiple-choice")  # multiple-choice|true-false|fill-blank
    options: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    # tagged: {"kind": "choice", "index": 2} | {"kind": "text", "value": "paris"}
    correct_answer: Mapped[dict] = mapped_column(JSONType, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text(), nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
