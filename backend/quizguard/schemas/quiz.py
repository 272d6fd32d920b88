from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal
from uuid import UUID
from quizguard.schemas.answer import Answer

ViolationKind = Literal[
    "tab-switch",
    "copy-paste",
    "right-click",
    "dev-tools",
    "fullscreen-exit",
    "suspicious-timing",
    "multiple-attempts",
]
# Client-side names folded into a canonical kind before recording
KIND_ALIASES: dict[str, str] = {"focus-loss": "tab-switch"}
ReportedViolationKind = Literal[ViolationKind, "focus-loss"]
Severity = Literal["low", "medium", "high", "critical"]
QuestionType = Literal["multiple-choice", "true-false", "fill-blank"]

DEFAULT_SEVERITY: dict[str, str] = {
    "tab-switch": "medium",
    "copy-paste": "medium",
    "right-click": "low",
    "dev-tools": "high",
    "fullscreen-exit": "medium",
    "suspicious-timing": "medium",
    "multiple-attempts": "critical",
}

class AntiCheatPolicy(BaseModel):
    auto_end_on_violation: bool = True
    enable_tab_switch_detection: bool = True
    max_tab_switches: int = Field(ge=0, default=3)
    # Per-kind caps other than tab-switch; kinds without an entry are only bound by the global ceiling
    max_per_kind: dict[ViolationKind, int] = Field(default_factory=lambda: {"copy-paste": 2})
    severity_overrides: dict[ViolationKind, Severity] = Field(default_factory=dict)

    def threshold_for(self, kind: str) -> int | None:
        if kind == "tab-switch":
            return self.max_tab_switches if self.enable_tab_switch_detection else None
        return self.max_per_kind.get(kind)

    def severity_for(self, kind: str) -> str:
        return self.severity_overrides.get(kind) or DEFAULT_SEVERITY.get(kind, "medium")

class QuizPolicy(BaseModel):
    """Snapshot copied onto every session at start."""
    anti_cheat: AntiCheatPolicy = Field(default_factory=AntiCheatPolicy)
    show_results: bool = False

class QuestionKey(BaseModel):
    id: UUID
    position: int
    prompt: str
    type: QuestionType
    options: list[str] = Field(default_factory=list)
    correct_answer: Answer
    explanation: str | None = None
    points: int = Field(ge=0, default=1)

class QuizSnapshot(BaseModel):
    id: UUID
    creator_id: UUID
    title: str
    price: int = Field(ge=0)
    duration_minutes: int = Field(ge=1)
    policy: QuizPolicy
    questions: list[QuestionKey]

    @property
    def is_priced(self) -> bool:
        return self.price > 0
