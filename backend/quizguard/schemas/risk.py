from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Any, Literal
from quizguard.schemas.quiz import Severity
from quizguard.schemas.session import Recommendation

FindingType = Literal["timing", "answer-pattern", "violations", "session"]

class Finding(BaseModel):
    type: FindingType
    severity: Severity
    weight: float
    details: dict[str, Any] = Field(default_factory=dict)

class RiskVerdict(BaseModel):
    risk_score: float = Field(ge=0, le=1)
    findings: list[Finding]
    recommendation: Recommendation
