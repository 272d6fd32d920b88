from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
import structlog

from quizguard.config import settings
from quizguard.models.session import AssessmentSession
from quizguard.schemas.quiz import KIND_ALIASES, QuizPolicy
from quizguard.services.deadlines import as_utc

log = structlog.get_logger()

@dataclass(frozen=True)
class ViolationDecision:
    recorded: bool
    forced: bool
    rule: str | None = None

# ---------- flood control ----------

def admit(record: AssessmentSession, now: datetime, *, limit: int, window_seconds: int) -> bool:
    """
    Fixed-window counter kept on the session row. Over the cap the event is
    dropped: only dropped_violation_count moves.
    """
    start = record.rate_window_started_at
    if start is None or as_utc(now) - as_utc(start) >= timedelta(seconds=window_seconds):
        record.rate_window_started_at = now
        record.rate_window_count = 0
    if record.rate_window_count >= limit:
        record.dropped_violation_count = int(record.dropped_violation_count or 0) + 1
        return False
    record.rate_window_count = int(record.rate_window_count or 0) + 1
    return True

def canonical_kind(kind: str) -> str:
    return KIND_ALIASES.get(kind, kind)

# ---------- log ----------

def append_violation(record: AssessmentSession, *, kind: str, severity: str, detail: str, now: datetime) -> None:
    # Reassign rather than mutate so the JSON columns are seen as dirty
    record.violations = [
        *(record.violations or []),
        {"kind": kind, "severity": severity, "timestamp": as_utc(now).isoformat(), "detail": detail},
    ]
    counts = dict(record.violation_counts or {})
    counts[kind] = int(counts.get(kind, 0)) + 1
    record.violation_counts = counts

# ---------- forced termination ----------

def forced_termination_rule(
    counts: dict[str, int],
    violations: list[dict],
    policy: QuizPolicy,
    *,
    ceiling: int,
) -> str | None:
    """
    Three independent rules, checked over the whole history:
      per-kind cap exceeded, any critical violation, total above the ceiling.
    """
    if not policy.anti_cheat.auto_end_on_violation:
        return None
    for kind in sorted(counts):
        limit = policy.anti_cheat.threshold_for(kind)
        if limit is not None and int(counts[kind]) > limit:
            return f"max-{kind}"
    if any(v.get("severity") == "critical" for v in violations):
        return "critical-severity"
    if sum(int(n) for n in counts.values()) > ceiling:
        return "violation-ceiling"
    return None

def record_violation(
    record: AssessmentSession,
    *,
    kind: str,
    detail: str,
    now: datetime,
    policy: QuizPolicy,
    ceiling: int | None = None,
    limit: int | None = None,
    window_seconds: int | None = None,
) -> ViolationDecision:
    """Append one violation to an active session and decide whether it must end."""
    kind = canonical_kind(kind)
    if not admit(
        record, now,
        limit=settings.violation_rate_limit if limit is None else limit,
        window_seconds=settings.violation_rate_window_seconds if window_seconds is None else window_seconds,
    ):
        log.warning("violation_dropped", session_id=str(record.id), kind=kind, dropped=record.dropped_violation_count)
        return ViolationDecision(recorded=False, forced=False)

    severity = policy.anti_cheat.severity_for(kind)
    append_violation(record, kind=kind, severity=severity, detail=detail, now=now)
    rule = forced_termination_rule(
        record.violation_counts, record.violations, policy,
        ceiling=settings.violation_ceiling if ceiling is None else ceiling,
    )
    log.info(
        "violation_recorded",
        session_id=str(record.id), kind=kind, severity=severity,
        total=len(record.violations), forced_rule=rule,
    )
    return ViolationDecision(recorded=True, forced=rule is not None, rule=rule)
