import asyncio
import uuid
from datetime import datetime, timedelta, timezone
import pytest
from sqlalchemy import func, select

from conftest import GOOD_META, answers_for
from quizguard.errors import SessionTerminal
from quizguard.models.ledger import LedgerTransaction
from quizguard.models.session import AssessmentSession
from quizguard.schemas.session import SubmittedAnswer
from quizguard.services import engine

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_concurrent_starts_create_one_session_and_one_charge(session_factory, make_quiz, fund, balance):
    quiz, _ = await make_quiz(price=500)
    participant = uuid.uuid4()
    await fund(participant, 1000)

    async def start():
        async with session_factory() as db:
            return await engine.start_session(db, participant_id=participant, quiz_id=quiz.id, client_meta=GOOD_META, now=T0)

    results = await asyncio.gather(*(start() for _ in range(5)))

    assert len({r.session_id for r in results}) == 1
    assert sum(not r.resumed for r in results) == 1
    assert await balance(participant) == 500
    async with session_factory() as db:
        assert await db.scalar(select(func.count()).select_from(AssessmentSession)) == 1
        assert await db.scalar(
            select(func.count()).select_from(LedgerTransaction).where(LedgerTransaction.kind == "charge")
        ) == 1


@pytest.mark.asyncio
async def test_concurrent_violations_are_all_kept(session_factory, make_quiz):
    quiz, _ = await make_quiz()
    participant = uuid.uuid4()
    async with session_factory() as db:
        started = await engine.start_session(db, participant_id=participant, quiz_id=quiz.id, now=T0)

    async def report(i):
        async with session_factory() as db:
            return await engine.record_violation(
                db, session_id=started.session_id, participant_id=participant,
                kind="dev-tools", detail=f"devtools opened {i}", now=T0 + timedelta(seconds=30),
            )

    outcomes = await asyncio.gather(*(report(i) for i in range(6)))

    assert sorted(o.total_violations for o in outcomes) == [1, 2, 3, 4, 5, 6]
    async with session_factory() as db:
        record = await db.get(AssessmentSession, started.session_id)
    assert record.violation_counts == {"dev-tools": 6}


@pytest.mark.asyncio
async def test_submit_racing_a_forcing_violation_has_one_winner(session_factory, make_quiz):
    quiz, questions = await make_quiz()
    participant = uuid.uuid4()
    async with session_factory() as db:
        started = await engine.start_session(db, participant_id=participant, quiz_id=quiz.id, client_meta=GOOD_META, now=T0)
    for i in range(3):
        async with session_factory() as db:
            await engine.record_violation(
                db, session_id=started.session_id, participant_id=participant, kind="tab-switch",
                now=T0 + timedelta(seconds=i),
            )
    later = T0 + timedelta(minutes=1)

    async def violate():
        async with session_factory() as db:
            return await engine.record_violation(
                db, session_id=started.session_id, participant_id=participant, kind="tab-switch", now=later,
            )

    async def submit():
        answers = [SubmittedAnswer.model_validate(a) for a in answers_for(questions)]
        async with session_factory() as db:
            return await engine.submit_session(
                db, session_id=started.session_id, participant_id=participant, answers=answers, now=later,
            )

    outcome, result = await asyncio.gather(violate(), submit(), return_exceptions=True)

    errors = [r for r in (outcome, result) if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], SessionTerminal)
    async with session_factory() as db:
        record = await db.get(AssessmentSession, started.session_id)
    expected = "auto-ended" if isinstance(result, SessionTerminal) else "completed"
    assert record.state == expected
