import uuid
import httpx
import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from quizguard.config import settings
from quizguard.db import Base, get_session
from quizguard.main import app
from quizguard.models.quiz import Quiz, Question
import quizguard.models.account  # noqa: F401
import quizguard.models.ledger  # noqa: F401
import quizguard.models.session  # noqa: F401
from quizguard.services import ledger

# Correct option per question; no rotation, alternation or repeats-only run
CORRECT_PATTERN = [2, 0, 3, 3, 1, 0, 2, 1, 3, 0]

GOOD_META = {
    "ip_address": "10.0.0.7",
    "user_agent": "Mozilla/5.0 (X11; Linux x86_64; rv:130.0) Gecko/20100101 Firefox/130.0",
}

BROWSER_UA = GOOD_META["user_agent"]


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'quizguard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def enqueued(monkeypatch):
    """Re-evaluation jobs that would have gone to redis."""
    calls = []
    monkeypatch.setattr("quizguard.services.engine.enqueue_reevaluation", calls.append)
    return calls


@pytest.fixture
def make_quiz(session_factory):
    async def _make(
        *,
        price=0,
        question_count=5,
        duration_minutes=10,
        status="approved",
        policy=None,
        creator_id=None,
        starts_at=None,
        ends_at=None,
    ):
        quiz = Quiz(
            id=uuid.uuid4(),
            creator_id=creator_id or uuid.uuid4(),
            title="World capitals",
            status=status,
            price=price,
            duration_minutes=duration_minutes,
            starts_at=starts_at,
            ends_at=ends_at,
            settings_json=policy or {},
        )
        questions = [
            Question(
                id=uuid.uuid4(),
                quiz_id=quiz.id,
                position=i,
                prompt=f"Question {i + 1}",
                type="multiple-choice",
                options=["a", "b", "c", "d"],
                correct_answer={"kind": "choice", "index": CORRECT_PATTERN[i % len(CORRECT_PATTERN)]},
                explanation=f"Because option {CORRECT_PATTERN[i % len(CORRECT_PATTERN)]}",
                points=1,
            )
            for i in range(question_count)
        ]
        async with session_factory() as s:
            s.add(quiz)
            await s.flush()
            s.add_all(questions)
            await s.commit()
        return quiz, questions
    return _make


@pytest.fixture
def fund(session_factory):
    async def _fund(user_id, amount):
        async with session_factory() as s:
            await ledger.apply_correction(s, user_id, amount, "test top-up")
            await s.commit()
    return _fund


@pytest.fixture
def balance(session_factory):
    async def _balance(user_id):
        async with session_factory() as s:
            return await ledger.balance_of(s, user_id)
    return _balance


def token_for(user_id, role="participant"):
    return jwt.encode(
        {"sub": str(user_id), "type": "access", "role": role},
        settings.jwt_secret,
        algorithm=settings.jwt_alg,
    )


def auth_headers(user_id, role="participant"):
    return {"Authorization": f"Bearer {token_for(user_id, role)}", "User-Agent": BROWSER_UA}


@pytest_asyncio.fixture
async def client(session_factory):
    async def _get_session():
        async with session_factory() as s:
            yield s
    app.dependency_overrides[get_session] = _get_session
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def answers_for(questions, picks=None, seconds=20):
    """Submit payload entries; defaults to the correct option for every question."""
    out = []
    for i, q in enumerate(questions):
        index = picks[i] if picks is not None else q.correct_answer["index"]
        out.append({"question_id": str(q.id), "answer": {"kind": "choice", "index": index}, "time_spent": seconds})
    return out
