from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal
from uuid import UUID
from datetime import datetime
from quizguard.schemas.answer import Answer
from quizguard.schemas.quiz import ReportedViolationKind, ViolationKind, Severity, QuestionType

SessionState = Literal["pending-payment", "active", "completed", "auto-ended", "abandoned"]
Recommendation = Literal["accept", "review", "reject"]

class QuestionPublic(BaseModel):
    # never carries correct_answer / explanation
    id: UUID
    position: int
    prompt: str
    type: QuestionType
    options: list[str]
    points: int

class StartSessionResponse(BaseModel):
    session_id: UUID
    quiz_id: UUID
    state: SessionState
    resumed: bool
    started_at: datetime
    deadline: datetime
    time_remaining_ms: int
    questions: list[QuestionPublic]

class SubmittedAnswer(BaseModel):
    question_id: UUID
    answer: Answer | None = None  # None = skipped
    time_spent: float = Field(ge=0, default=0, description="seconds")

class SubmitRequest(BaseModel):
    answers: list[SubmittedAnswer] = Field(default_factory=list, max_length=500)

class AnswerReview(BaseModel):
    question_id: UUID
    answer: Answer | None = None
    is_correct: bool
    correct_answer: Answer
    explanation: str | None = None

class SubmitResult(BaseModel):
    session_id: UUID
    state: SessionState
    score: int
    correct_count: int
    total_questions: int
    accuracy: float
    duration_ms: int
    risk_recommendation: Recommendation | None = None
    flagged: bool = False
    review: list[AnswerReview] | None = None

class ViolationReport(BaseModel):
    kind: ReportedViolationKind
    detail: str = Field(default="", max_length=500)

class ViolationOutcome(BaseModel):
    accepted: bool
    forced: bool
    state: SessionState
    total_violations: int
    rule: str | None = None

class ViolationPublic(BaseModel):
    kind: ViolationKind
    severity: Severity
    timestamp: datetime
    detail: str = ""

class SessionPublic(BaseModel):
    id: UUID
    quiz_id: UUID
    participant_id: UUID
    state: SessionState
    started_at: datetime
    deadline: datetime
    ended_at: datetime | None = None
    duration_ms: int | None = None
    end_reason: str | None = None
    question_count: int
    score: int
    correct_count: int
    violations: list[ViolationPublic]
    violation_counts: dict[str, int]
    dropped_violation_count: int
    flagged: bool
    risk_score: float | None = None
    risk_recommendation: Recommendation | None = None
