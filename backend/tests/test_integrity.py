import uuid
from datetime import datetime, timedelta, timezone
import pytest
from quizguard.models.session import AssessmentSession
from quizguard.schemas.quiz import QuizPolicy
from quizguard.services.integrity import admit, forced_termination_rule, record_violation

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _session():
    return AssessmentSession(
        id=uuid.uuid4(), quiz_id=uuid.uuid4(), participant_id=uuid.uuid4(), question_count=5,
        state="active", started_at=T0, deadline_at=T0 + timedelta(minutes=10),
        violations=[], violation_counts={}, rate_window_count=0, dropped_violation_count=0,
    )


def _report(record, kind, n, policy=None, start=T0, **kw):
    policy = policy or QuizPolicy()
    decisions = []
    for i in range(n):
        decisions.append(record_violation(
            record, kind=kind, detail=f"event {i}", now=start + timedelta(seconds=i), policy=policy, **kw,
        ))
    return decisions


def test_tab_switch_cap_is_exceeded_on_the_fourth():
    record = _session()
    decisions = _report(record, "tab-switch", 4)
    assert [d.forced for d in decisions] == [False, False, False, True]
    assert decisions[-1].rule == "max-tab-switch"
    assert record.violation_counts == {"tab-switch": 4}
    assert record.violations[0]["severity"] == "medium"


def test_copy_paste_default_cap():
    record = _session()
    decisions = _report(record, "copy-paste", 3)
    assert [d.forced for d in decisions] == [False, False, True]
    assert decisions[-1].rule == "max-copy-paste"


def test_critical_violation_forces_termination():
    record = _session()
    (decision,) = _report(record, "multiple-attempts", 1)
    assert decision.forced
    assert decision.rule == "critical-severity"


def test_uncapped_kind_is_bound_by_the_ceiling():
    record = _session()
    decisions = _report(record, "right-click", 11)
    assert not any(d.forced for d in decisions[:10])
    assert decisions[10].rule == "violation-ceiling"


def test_high_severity_alone_does_not_force():
    record = _session()
    decisions = _report(record, "dev-tools", 5)
    assert not any(d.forced for d in decisions)
    assert record.violations[0]["severity"] == "high"


def test_auto_end_disabled_never_forces():
    policy = QuizPolicy.model_validate({"anti_cheat": {"auto_end_on_violation": False}})
    record = _session()
    decisions = _report(record, "multiple-attempts", 2, policy=policy) + _report(record, "tab-switch", 6, policy=policy)
    assert not any(d.forced for d in decisions)
    assert len(record.violations) == 8


def test_tab_switch_detection_can_be_disabled():
    policy = QuizPolicy.model_validate({"anti_cheat": {"enable_tab_switch_detection": False}})
    record = _session()
    assert not any(d.forced for d in _report(record, "tab-switch", 5, policy=policy))


def test_severity_override_applies():
    policy = QuizPolicy.model_validate({"anti_cheat": {"severity_overrides": {"right-click": "critical"}}})
    record = _session()
    (decision,) = _report(record, "right-click", 1, policy=policy)
    assert record.violations[0]["severity"] == "critical"
    assert decision.rule == "critical-severity"


def test_flood_is_dropped_without_being_logged():
    policy = QuizPolicy.model_validate({"anti_cheat": {"auto_end_on_violation": False}})
    record = _session()
    decisions = [
        record_violation(record, kind="right-click", detail="", now=T0, policy=policy, limit=20, window_seconds=60)
        for _ in range(25)
    ]
    assert sum(d.recorded for d in decisions) == 20
    assert len(record.violations) == 20
    assert record.dropped_violation_count == 5
    assert not any(d.forced for d in decisions)

    # A fresh window admits events again
    later = record_violation(
        record, kind="right-click", detail="", now=T0 + timedelta(seconds=61), policy=policy, limit=20, window_seconds=60,
    )
    assert later.recorded
    assert len(record.violations) == 21


def test_admit_counts_per_window():
    record = _session()
    assert admit(record, T0, limit=1, window_seconds=60)
    assert not admit(record, T0 + timedelta(seconds=59), limit=1, window_seconds=60)
    assert admit(record, T0 + timedelta(seconds=60), limit=1, window_seconds=60)
    assert record.dropped_violation_count == 1


@pytest.mark.parametrize("counts, violations, rule", [
    ({"tab-switch": 3}, [], None),
    ({"tab-switch": 4}, [], "max-tab-switch"),
    ({"dev-tools": 1}, [{"severity": "critical"}], "critical-severity"),
    ({"right-click": 6, "dev-tools": 5}, [], "violation-ceiling"),
    ({"right-click": 5, "dev-tools": 5}, [], None),
])
def test_forced_termination_rules(counts, violations, rule):
    assert forced_termination_rule(counts, violations, QuizPolicy(), ceiling=10) == rule
