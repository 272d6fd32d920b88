import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from conftest import GOOD_META, answers_for
from quizguard.errors import (
    AccessRestricted, PaymentRequired, QuizUnavailable, SessionExpired, SessionNotFound, SessionNotTerminal, SessionTerminal,
)
from quizguard.models.account import PLATFORM_ACCOUNT_ID
from quizguard.models.ledger import LedgerTransaction
from quizguard.models.session import AssessmentSession
from quizguard.schemas.session import SubmittedAnswer
from quizguard.services import engine, risk

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _answers(questions, picks=None, seconds=20):
    return [SubmittedAnswer.model_validate(a) for a in answers_for(questions, picks, seconds)]


async def _start(session_factory, participant, quiz, now=T0):
    async with session_factory() as db:
        return await engine.start_session(db, participant_id=participant, quiz_id=quiz.id, client_meta=GOOD_META, now=now)


async def _submit(session_factory, participant, session_id, answers, now):
    async with session_factory() as db:
        return await engine.submit_session(db, session_id=session_id, participant_id=participant, answers=answers, now=now)


async def _violation(session_factory, participant, session_id, kind, now):
    async with session_factory() as db:
        return await engine.record_violation(db, session_id=session_id, participant_id=participant, kind=kind, now=now)


async def _read(session_factory, participant, session_id, now):
    async with session_factory() as db:
        return await engine.get_session(db, session_id=session_id, participant_id=participant, now=now)


@pytest.mark.asyncio
async def test_free_quiz_starts_without_touching_the_ledger(session_factory, make_quiz):
    quiz, _ = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    assert started.state == "active"
    assert not started.resumed
    assert started.time_remaining_ms == 10 * 60 * 1000
    assert started.deadline == T0 + timedelta(minutes=10)
    assert len(started.questions) == 5
    assert "correct_answer" not in started.questions[0].model_dump()

    async with session_factory() as db:
        assert await db.scalar(select(func.count()).select_from(LedgerTransaction)) == 0


@pytest.mark.asyncio
async def test_paid_start_escrows_and_splits(session_factory, make_quiz, fund, balance):
    quiz, _ = await make_quiz(price=500)
    participant = uuid.uuid4()
    await fund(participant, 1000)

    started = await _start(session_factory, participant, quiz)

    assert await balance(participant) == 500
    assert await balance(quiz.creator_id) == 350
    assert await balance(PLATFORM_ACCOUNT_ID) == 150
    async with session_factory() as db:
        record = await db.get(AssessmentSession, started.session_id)
        txs = (await db.execute(
            select(LedgerTransaction).where(LedgerTransaction.related_session_id == started.session_id)
        )).scalars().all()
    assert len(txs) == 3
    assert {t.correlation_id for t in txs} == {record.payment_correlation_id}


@pytest.mark.asyncio
async def test_second_start_resumes_without_charging_again(session_factory, make_quiz, fund, balance):
    quiz, _ = await make_quiz(price=500)
    participant = uuid.uuid4()
    await fund(participant, 1000)

    first = await _start(session_factory, participant, quiz)
    second = await _start(session_factory, participant, quiz, now=T0 + timedelta(minutes=2))

    assert second.resumed
    assert second.session_id == first.session_id
    assert second.time_remaining_ms == 8 * 60 * 1000
    assert await balance(participant) == 500


@pytest.mark.asyncio
async def test_unaffordable_quiz_creates_nothing(session_factory, make_quiz, fund, balance):
    quiz, _ = await make_quiz(price=500)
    poor, unknown = uuid.uuid4(), uuid.uuid4()
    await fund(poor, 100)

    with pytest.raises(PaymentRequired) as exc:
        await _start(session_factory, poor, quiz)
    assert exc.value.context["required"] == 500
    with pytest.raises(PaymentRequired):
        await _start(session_factory, unknown, quiz)

    assert await balance(poor) == 100
    async with session_factory() as db:
        assert await db.scalar(select(func.count()).select_from(AssessmentSession)) == 0


@pytest.mark.asyncio
async def test_unavailable_quizzes(session_factory, make_quiz):
    draft, _ = await make_quiz(status="draft")
    closed, _ = await make_quiz(price=100, ends_at=T0 - timedelta(days=1))
    empty, _ = await make_quiz(question_count=0)
    unsplittable, _ = await make_quiz(price=1)
    for quiz in (draft, closed, empty, unsplittable):
        with pytest.raises(QuizUnavailable):
            await _start(session_factory, uuid.uuid4(), quiz)
    with pytest.raises(QuizUnavailable):
        async with session_factory() as db:
            await engine.start_session(db, participant_id=uuid.uuid4(), quiz_id=uuid.uuid4(), now=T0)


@pytest.mark.asyncio
async def test_submit_scores_and_accepts(session_factory, make_quiz):
    quiz, questions = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    result = await _submit(session_factory, participant, started.session_id, _answers(questions), T0 + timedelta(minutes=2))

    assert result.state == "completed"
    assert result.score == 5
    assert result.correct_count == 5
    assert result.accuracy == 100.0
    assert result.duration_ms == 120_000
    assert result.risk_recommendation == "accept"
    assert not result.flagged
    assert result.review is None


@pytest.mark.asyncio
async def test_review_is_returned_when_results_are_shown(session_factory, make_quiz):
    quiz, questions = await make_quiz(question_count=3, policy={"show_results": True})
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    result = await _submit(session_factory, participant, started.session_id, _answers(questions[:2]), T0 + timedelta(minutes=1))

    assert len(result.review) == 3
    assert [r.is_correct for r in result.review] == [True, True, False]
    assert result.review[2].answer is None
    assert result.review[0].correct_answer.index == questions[0].correct_answer["index"]


@pytest.mark.asyncio
async def test_identical_answers_are_flagged(session_factory, make_quiz):
    quiz, questions = await make_quiz(question_count=10)
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    result = await _submit(session_factory, participant, started.session_id, _answers(questions, [1] * 10), T0 + timedelta(minutes=5))

    assert result.state == "completed"
    assert result.correct_count == 2
    assert result.risk_recommendation == "reject"
    assert result.flagged

    stored = await _read(session_factory, participant, started.session_id, T0 + timedelta(minutes=6))
    assert stored.flagged
    assert stored.risk_score == 0.8


@pytest.mark.asyncio
async def test_terminal_sessions_reject_further_writes(session_factory, make_quiz):
    quiz, questions = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)
    await _submit(session_factory, participant, started.session_id, _answers(questions), T0 + timedelta(minutes=2))

    with pytest.raises(SessionTerminal):
        await _submit(session_factory, participant, started.session_id, _answers(questions, [0] * 5), T0 + timedelta(minutes=3))
    with pytest.raises(SessionTerminal):
        await _violation(session_factory, participant, started.session_id, "tab-switch", T0 + timedelta(minutes=3))

    stored = await _read(session_factory, participant, started.session_id, T0 + timedelta(minutes=3))
    assert stored.score == 5
    assert stored.violations == []


@pytest.mark.asyncio
async def test_submit_within_grace_is_accepted(session_factory, make_quiz):
    quiz, questions = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    result = await _submit(session_factory, participant, started.session_id, _answers(questions), T0 + timedelta(minutes=10, seconds=20))
    assert result.state == "completed"


@pytest.mark.asyncio
async def test_late_submit_auto_ends(session_factory, make_quiz):
    quiz, questions = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)
    late = T0 + timedelta(minutes=10, seconds=31)

    with pytest.raises(SessionExpired):
        await _submit(session_factory, participant, started.session_id, _answers(questions), late)

    stored = await _read(session_factory, participant, started.session_id, late)
    assert stored.state == "auto-ended"
    assert stored.end_reason == "deadline"
    assert stored.score == 0


@pytest.mark.asyncio
async def test_late_violation_auto_ends(session_factory, make_quiz):
    quiz, _ = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    with pytest.raises(SessionExpired):
        await _violation(session_factory, participant, started.session_id, "tab-switch", T0 + timedelta(minutes=15))

    stored = await _read(session_factory, participant, started.session_id, T0 + timedelta(minutes=15))
    assert stored.state == "auto-ended"
    assert stored.violations == []


@pytest.mark.asyncio
async def test_unattended_session_is_abandoned_on_read(session_factory, make_quiz):
    quiz, questions = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    stored = await _read(session_factory, participant, started.session_id, T0 + timedelta(minutes=11))
    assert stored.state == "abandoned"
    assert stored.ended_at is not None

    with pytest.raises(SessionTerminal):
        await _submit(session_factory, participant, started.session_id, _answers(questions), T0 + timedelta(minutes=12))


@pytest.mark.asyncio
async def test_overdue_attempt_is_replaced_on_start(session_factory, make_quiz):
    quiz, _ = await make_quiz()
    participant = uuid.uuid4()
    first = await _start(session_factory, participant, quiz)
    second = await _start(session_factory, participant, quiz, now=T0 + timedelta(minutes=20))

    assert not second.resumed
    assert second.session_id != first.session_id
    old = await _read(session_factory, participant, first.session_id, T0 + timedelta(minutes=20))
    assert old.state == "abandoned"


@pytest.mark.asyncio
async def test_violations_force_auto_end_and_flag(session_factory, make_quiz):
    quiz, questions = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    outcomes = [
        await _violation(session_factory, participant, started.session_id, "tab-switch", T0 + timedelta(seconds=10 + i))
        for i in range(4)
    ]
    assert [o.forced for o in outcomes] == [False, False, False, True]
    assert outcomes[-1].state == "auto-ended"
    assert outcomes[-1].rule == "max-tab-switch"
    assert outcomes[-1].total_violations == 4

    stored = await _read(session_factory, participant, started.session_id, T0 + timedelta(minutes=1))
    assert stored.end_reason == "violation:max-tab-switch"
    assert stored.flagged
    assert stored.risk_recommendation == "reject"

    with pytest.raises(SessionTerminal):
        await _submit(session_factory, participant, started.session_id, _answers(questions), T0 + timedelta(minutes=1))


@pytest.mark.asyncio
async def test_flooded_violations_still_report_accepted(session_factory, make_quiz):
    quiz, _ = await make_quiz(policy={"anti_cheat": {"auto_end_on_violation": False}})
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    outcomes = [
        await _violation(session_factory, participant, started.session_id, "right-click", T0 + timedelta(seconds=5))
        for _ in range(22)
    ]
    assert all(o.accepted and not o.forced for o in outcomes)
    assert outcomes[-1].total_violations == 20

    stored = await _read(session_factory, participant, started.session_id, T0 + timedelta(seconds=6))
    assert stored.dropped_violation_count == 2
    assert stored.state == "active"


@pytest.mark.asyncio
async def test_evaluator_failure_does_not_block_submit(session_factory, make_quiz, monkeypatch, enqueued):
    quiz, questions = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    def boom(inputs):
        raise RuntimeError("evaluator down")
    monkeypatch.setattr(risk, "evaluate", boom)

    result = await _submit(session_factory, participant, started.session_id, _answers(questions), T0 + timedelta(minutes=2))

    assert result.state == "completed"
    assert result.score == 5
    assert result.risk_recommendation is None
    assert enqueued == [started.session_id]


@pytest.mark.asyncio
async def test_verdict_is_recomputable(session_factory, make_quiz):
    quiz, questions = await make_quiz(question_count=10)
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    with pytest.raises(SessionNotTerminal):
        async with session_factory() as db:
            await engine.get_verdict(db, session_id=started.session_id, participant_id=participant, now=T0)

    await _submit(session_factory, participant, started.session_id, _answers(questions, [1] * 10), T0 + timedelta(minutes=3))
    async with session_factory() as db:
        first = await engine.get_verdict(db, session_id=started.session_id, now=T0 + timedelta(days=1))
    async with session_factory() as db:
        second = await engine.get_verdict(db, session_id=started.session_id, now=T0 + timedelta(days=30))
    assert first == second
    assert first.recommendation == "reject"


@pytest.mark.asyncio
async def test_sessions_are_private_to_their_participant(session_factory, make_quiz):
    quiz, questions = await make_quiz()
    owner, other = uuid.uuid4(), uuid.uuid4()
    started = await _start(session_factory, owner, quiz)

    with pytest.raises(SessionNotFound):
        await _read(session_factory, other, started.session_id, T0)
    with pytest.raises(SessionNotFound):
        await _submit(session_factory, other, started.session_id, _answers(questions), T0)
    with pytest.raises(SessionNotFound):
        await _read(session_factory, owner, uuid.uuid4(), T0)


@pytest.mark.asyncio
async def test_focus_loss_is_recorded_as_tab_switch(session_factory, make_quiz):
    quiz, _ = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, quiz)

    outcome = await _violation(session_factory, participant, started.session_id, "focus-loss", T0 + timedelta(seconds=5))

    assert outcome.total_violations == 1
    stored = await _read(session_factory, participant, started.session_id, T0 + timedelta(seconds=6))
    assert stored.violation_counts == {"tab-switch": 1}
    assert stored.violations[0].kind == "tab-switch"
    assert stored.violations[0].severity == "medium"


@pytest.mark.asyncio
async def test_recent_violations_block_new_starts(session_factory, make_quiz):
    lenient = {"anti_cheat": {"auto_end_on_violation": False}}
    noisy, _ = await make_quiz(policy=lenient)
    second, _ = await make_quiz()
    third, _ = await make_quiz()
    participant = uuid.uuid4()
    started = await _start(session_factory, participant, noisy)
    for i in range(10):
        await _violation(session_factory, participant, started.session_id, "right-click", T0 + timedelta(seconds=1 + i))

    # Ten is still allowed
    assert not (await _start(session_factory, participant, second, T0 + timedelta(minutes=1))).resumed

    await _violation(session_factory, participant, started.session_id, "right-click", T0 + timedelta(seconds=30))
    with pytest.raises(AccessRestricted) as exc:
        await _start(session_factory, participant, third, T0 + timedelta(minutes=2))
    assert exc.value.status_code == 429
    assert exc.value.context["recent_violations"] == 11

    # Other participants are unaffected, and the history ages out after a day
    assert not (await _start(session_factory, uuid.uuid4(), third, T0 + timedelta(minutes=2))).resumed
    later = await _start(session_factory, participant, third, T0 + timedelta(hours=25))
    assert later.state == "active"


@pytest.mark.asyncio
async def test_version_conflict_retakes_the_session_lock(db, monkeypatch):
    entered = []

    @asynccontextmanager
    async def counting_lock(session, key):
        entered.append(key)
        yield

    monkeypatch.setattr(engine, "transaction_lock", counting_lock)
    calls = 0

    async def work():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise StaleDataError("row version changed")
        return "done"

    session_id = uuid.uuid4()
    assert await engine._serialized(db, session_id, work) == "done"
    assert calls == 2
    assert len(entered) == 2
    assert set(entered) == {f"session:{session_id}"}
