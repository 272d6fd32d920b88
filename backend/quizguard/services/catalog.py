from __future__ import annotations
from datetime import datetime
from uuid import UUID
import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quizguard.errors import QuizUnavailable
from quizguard.models.quiz import Quiz, Question
from quizguard.schemas.quiz import QuizSnapshot, QuizPolicy, QuestionKey
from quizguard.services.deadlines import as_utc, utcnow
from quizguard.services.ledger import split_price

log = structlog.get_logger()

def is_available(quiz: Quiz, now: datetime) -> bool:
    if quiz.status != "approved":
        return False
    if quiz.price <= 0:
        return True
    # Priced quizzes may be restricted to a window
    if quiz.starts_at and as_utc(now) < as_utc(quiz.starts_at):
        return False
    if quiz.ends_at and as_utc(now) > as_utc(quiz.ends_at):
        return False
    return True

async def load_answer_key(session: AsyncSession, quiz_id: UUID) -> list[QuestionKey]:
    rows = (await session.execute(
        select(Question).where(Question.quiz_id == quiz_id).order_by(Question.position.asc(), Question.id)
    )).scalars().all()
    return [
        QuestionKey(
            id=q.id, position=q.position, prompt=q.prompt, type=q.type,
            options=list(q.options or []), correct_answer=q.correct_answer,
            explanation=q.explanation, points=q.points,
        ) for q in rows
    ]

async def load_quiz(session: AsyncSession, quiz_id: UUID, now: datetime | None = None) -> QuizSnapshot:
    """Quiz with answer key, or QuizUnavailable."""
    quiz = await session.get(Quiz, quiz_id)
    if not quiz or not is_available(quiz, now or utcnow()):
        raise QuizUnavailable(f"quiz {quiz_id} not found or not available", quiz_id=str(quiz_id))
    try:
        questions = await load_answer_key(session, quiz.id)
        snapshot = QuizSnapshot(
            id=quiz.id,
            creator_id=quiz.creator_id,
            title=quiz.title,
            price=int(quiz.price),
            duration_minutes=quiz.duration_minutes,
            policy=QuizPolicy.model_validate(quiz.settings_json or {}),
            questions=questions,
        )
    except ValidationError as e:
        log.error("quiz_catalog_invalid", quiz_id=str(quiz_id), errors=e.error_count())
        raise QuizUnavailable(f"quiz {quiz_id} is misconfigured", quiz_id=str(quiz_id)) from e
    if not snapshot.questions:
        raise QuizUnavailable(f"quiz {quiz_id} has no questions", quiz_id=str(quiz_id))
    if snapshot.is_priced and min(split_price(snapshot.price)) <= 0:
        log.error("quiz_price_unsplittable", quiz_id=str(quiz_id), price=snapshot.price)
        raise QuizUnavailable(f"quiz {quiz_id} price is too small to split", quiz_id=str(quiz_id), price=snapshot.price)
    return snapshot
