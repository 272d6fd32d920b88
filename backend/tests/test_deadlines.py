from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from quizguard.services.catalog import is_available
from quizguard.services.deadlines import as_utc, compute_deadline, elapsed_ms, is_overdue, time_remaining_ms

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

def test_naive_datetimes_are_read_as_utc():
    naive = datetime(2026, 3, 1, 12, 0)
    assert as_utc(naive) == T0
    plus_two = datetime(2026, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert as_utc(plus_two) == T0

def test_deadline_and_remaining():
    deadline = compute_deadline(T0, 15)
    assert deadline == T0 + timedelta(minutes=15)
    assert time_remaining_ms(deadline, T0 + timedelta(minutes=14)) == 60_000
    assert time_remaining_ms(deadline, T0 + timedelta(minutes=20)) == 0
    assert elapsed_ms(T0, T0 + timedelta(seconds=1.5)) == 1_500

def test_grace_period_boundary():
    deadline = compute_deadline(T0, 10)
    assert not is_overdue(T0, deadline, T0 + timedelta(minutes=10, seconds=30), grace_seconds=30)
    assert is_overdue(T0, deadline, T0 + timedelta(minutes=10, seconds=31), grace_seconds=30)
    assert is_overdue(T0, deadline, T0 + timedelta(minutes=10, seconds=1), grace_seconds=0)

def _quiz(**kw):
    base = dict(status="approved", price=0, starts_at=None, ends_at=None)
    base.update(kw)
    return SimpleNamespace(**base)

def test_quiz_availability():
    assert is_available(_quiz(), T0)
    assert not is_available(_quiz(status="pending"), T0)
    # Windows only bind priced quizzes
    assert is_available(_quiz(ends_at=T0 - timedelta(days=1)), T0)
    assert not is_available(_quiz(price=100, ends_at=T0 - timedelta(days=1)), T0)
    assert not is_available(_quiz(price=100, starts_at=T0 + timedelta(hours=1)), T0)
    assert is_available(_quiz(price=100, starts_at=T0 - timedelta(hours=1), ends_at=T0 + timedelta(hours=1)), T0)
