from __future__ import annotations
from datetime import datetime, timedelta, timezone
from quizguard.config import settings

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(dt: datetime) -> datetime:
    """Normalize to aware UTC. Some drivers (sqlite) hand back naive datetimes."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def compute_deadline(started_at: datetime, duration_minutes: int) -> datetime:
    return as_utc(started_at) + timedelta(minutes=int(duration_minutes))

def elapsed_ms(started_at: datetime, now: datetime) -> int:
    return max(0, int((as_utc(now) - as_utc(started_at)).total_seconds() * 1000))

def time_remaining_ms(deadline_at: datetime, now: datetime) -> int:
    return max(0, int((as_utc(deadline_at) - as_utc(now)).total_seconds() * 1000))

def is_overdue(started_at: datetime, deadline_at: datetime, now: datetime, grace_seconds: int | None = None) -> bool:
    """elapsed > allotted + grace"""
    grace = settings.session_grace_seconds if grace_seconds is None else grace_seconds
    allotted = as_utc(deadline_at) - as_utc(started_at)
    elapsed = as_utc(now) - as_utc(started_at)
    return elapsed > allotted + timedelta(seconds=grace)
