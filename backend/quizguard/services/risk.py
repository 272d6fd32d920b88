"""
Post-hoc fraud-risk evaluation of a finished session.

Everything here is a pure function of the stored session history: the same
answers, violations, client metadata and policy snapshot always produce the
same verdict, so verdicts can be recomputed for audits at any time.

Scoring: each triggered finding contributes the weight of its severity;
    risk_score = min(1, sum(weights) / len(FINDING_CATEGORIES))
Weights are expressed in category units, so a single high-severity finding
lands exactly on the reject line and a single medium one on the review line.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any

from quizguard.config import settings
from quizguard.schemas.quiz import QuizPolicy
from quizguard.schemas.risk import Finding, RiskVerdict

FINDING_CATEGORIES = ("timing", "answer-pattern", "violations", "session")

SEVERITY_WEIGHTS = {
    "low": 0.4,
    "medium": 1.6,
    "high": 3.2,
    "critical": 4.0,
}

REJECT_AT = 0.8
REVIEW_AT = 0.4

SUSPICIOUS_TIMING_RATIO = 0.3
HIGH_TIMING_RATIO = 0.5
MIN_PATTERN_ANSWERS = 4
MIN_USER_AGENT_LENGTH = 20
# Browser automation drivers announce themselves in the user agent
AUTOMATION_USER_AGENT = re.compile(r"selenium|webdriver|automation|headless", re.IGNORECASE)
DEFAULT_OPTION_COUNT = 4


@dataclass(frozen=True)
class RiskInputs:
    answers: list[dict] = field(default_factory=list)
    violations: list[dict] = field(default_factory=list)
    violation_counts: dict[str, int] = field(default_factory=dict)
    client_meta: dict[str, Any] = field(default_factory=dict)
    policy: QuizPolicy = field(default_factory=QuizPolicy)
    min_answer_seconds: float = 3
    max_answer_seconds: float = 300


def inputs_from_session(record) -> RiskInputs:
    return RiskInputs(
        answers=list(record.answers or []),
        violations=list(record.violations or []),
        violation_counts=dict(record.violation_counts or {}),
        client_meta=dict(record.client_meta or {}),
        policy=QuizPolicy.model_validate(record.policy or {}),
        min_answer_seconds=settings.min_plausible_answer_seconds,
        max_answer_seconds=settings.max_plausible_answer_seconds,
    )


def _finding(type_: str, severity: str, **details) -> Finding:
    return Finding(type=type_, severity=severity, weight=SEVERITY_WEIGHTS[severity], details=details)

# ---------- individual checks ----------

def check_timing(answers: list[dict], lo: float, hi: float) -> Finding | None:
    if not answers:
        return None
    odd = [a for a in answers if float(a.get("time_spent") or 0) < lo or float(a.get("time_spent") or 0) > hi]
    ratio = len(odd) / len(answers)
    if ratio <= SUSPICIOUS_TIMING_RATIO:
        return None
    return _finding(
        "timing",
        "high" if ratio > HIGH_TIMING_RATIO else "medium",
        suspicious_answers=len(odd),
        total_answers=len(answers),
        suspicious_ratio=round(ratio, 4),
    )


def _choice_indices(answers: list[dict]) -> tuple[list[int], int]:
    picks: list[int] = []
    width = 0
    for a in answers:
        ans = a.get("answer") or {}
        if ans.get("kind") == "choice":
            picks.append(int(ans["index"]))
            width = max(width, int(a.get("option_count") or 0))
    return picks, (width or DEFAULT_OPTION_COUNT)


def is_rotation(picks: list[int], width: int) -> bool:
    """0,1,2,3,0,1,... with no break."""
    return all(picks[i] == (picks[i - 1] + 1) % width for i in range(1, len(picks)))


def is_alternation(picks: list[int]) -> bool:
    """a,b,a,b,... with a != b and no break."""
    return picks[0] != picks[1] and all(picks[i] == picks[i - 2] for i in range(2, len(picks)))


def check_answer_pattern(answers: list[dict]) -> Finding | None:
    picks, width = _choice_indices(answers)
    if len(picks) < MIN_PATTERN_ANSWERS:
        return None
    all_same = len(set(picks)) == 1
    rotation = not all_same and is_rotation(picks, width)
    alternation = not all_same and is_alternation(picks)
    if not (all_same or rotation or alternation):
        return None
    return _finding(
        "answer-pattern",
        "high",
        all_same_option=all_same,
        sequential=rotation,
        alternating=alternation,
        unique_options=len(set(picks)),
        total_choices=len(picks),
    )


def check_violations(violations: list[dict], counts: dict[str, int], policy: QuizPolicy) -> Finding | None:
    excessive = sorted(
        kind for kind, n in counts.items()
        if (limit := policy.anti_cheat.threshold_for(kind)) is not None and int(n) > limit
    )
    critical = sum(1 for v in violations if v.get("severity") == "critical")
    if not excessive and not critical:
        return None
    return _finding(
        "violations",
        "critical",
        excessive_kinds=excessive,
        critical_count=critical,
        total_violations=len(violations),
    )


def check_session_artifacts(client_meta: dict[str, Any]) -> Finding | None:
    ip = client_meta.get("ip_address")
    ua = client_meta.get("user_agent") or ""
    automated = bool(AUTOMATION_USER_AGENT.search(ua))
    if ip and len(ua) >= MIN_USER_AGENT_LENGTH and not automated:
        return None
    return _finding(
        "session",
        "low",
        has_ip_address=bool(ip),
        has_user_agent=bool(ua),
        user_agent_length=len(ua),
        automation_user_agent=automated,
    )

# ---------- aggregate ----------

def recommend(score: float) -> str:
    if score >= REJECT_AT:
        return "reject"
    if score >= REVIEW_AT:
        return "review"
    return "accept"


def evaluate(inputs: RiskInputs) -> RiskVerdict:
    candidates = (
        check_timing(inputs.answers, inputs.min_answer_seconds, inputs.max_answer_seconds),
        check_answer_pattern(inputs.answers),
        check_violations(inputs.violations, inputs.violation_counts, inputs.policy),
        check_session_artifacts(inputs.client_meta),
    )
    findings = [f for f in candidates if f is not None]
    total = sum(f.weight for f in findings)
    score = round(min(1.0, total / len(FINDING_CATEGORIES)), 4)
    return RiskVerdict(risk_score=score, findings=findings, recommendation=recommend(score))
