from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID
import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from quizguard.config import settings
from quizguard.errors import (
    AccessRestricted, DuplicateSession, InsufficientFunds, PaymentRequired,
    SessionExpired, SessionNotTerminal, SessionTerminal,
)
from quizguard.jobs.queue import enqueue_reevaluation
from quizguard.models.session import AssessmentSession
from quizguard.schemas.quiz import QuizPolicy, QuizSnapshot
from quizguard.schemas.risk import RiskVerdict
from quizguard.schemas.session import (
    AnswerReview, QuestionPublic, SessionPublic, StartSessionResponse,
    SubmitResult, SubmittedAnswer, ViolationOutcome, ViolationPublic,
)
from quizguard.services import catalog, integrity, ledger, risk, scoring
from quizguard.services import session_store as store
from quizguard.services.deadlines import as_utc, time_remaining_ms, utcnow
from quizguard.services.locks import attempt_key, session_key, transaction_lock

log = structlog.get_logger()

T = TypeVar("T")

# Version-conflict retries for per-session writes. Ledger work is never retried.
OPTIMISTIC_ATTEMPTS = 3

# ---------- helpers ----------

def _public_questions(quiz: QuizSnapshot) -> list[QuestionPublic]:
    return [
        QuestionPublic(id=q.id, position=q.position, prompt=q.prompt, type=q.type, options=q.options, points=q.points)
        for q in quiz.questions
    ]

def _start_response(record: AssessmentSession, quiz: QuizSnapshot, now: datetime, *, resumed: bool) -> StartSessionResponse:
    return StartSessionResponse(
        session_id=record.id,
        quiz_id=record.quiz_id,
        state=record.state,
        resumed=resumed,
        started_at=as_utc(record.started_at),
        deadline=as_utc(record.deadline_at),
        time_remaining_ms=time_remaining_ms(record.deadline_at, now),
        questions=_public_questions(quiz),
    )

def _evaluate_best_effort(record: AssessmentSession) -> tuple[RiskVerdict | None, bool]:
    """(verdict, needs_retry). A failing evaluator never blocks the caller."""
    try:
        verdict = risk.evaluate(risk.inputs_from_session(record))
    except Exception:
        log.exception("risk_evaluation_failed", session_id=str(record.id))
        return None, True
    store.apply_verdict(record, verdict)
    return verdict, False

async def _serialized(db: AsyncSession, session_id: UUID, work: Callable[[], Awaitable[T]]) -> T:
    """
    Run `work` and commit while holding the per-session lock. A concurrent
    writer that slipped past the lock (another process without advisory
    locks) surfaces as a version conflict, and the work is replayed against
    fresh state. The advisory lock is transaction scoped, so every attempt
    takes it again after the previous rollback dropped it.
    """
    key = session_key(session_id)
    for attempt in range(1, OPTIMISTIC_ATTEMPTS + 1):
        async with transaction_lock(db, key):
            try:
                result = await work()
                await db.commit()
                return result
            except StaleDataError:
                await db.rollback()
                log.warning("session_version_conflict", session_id=str(session_id), attempt=attempt)
                if attempt == OPTIMISTIC_ATTEMPTS:
                    raise
            except BaseException:
                await db.rollback()
                raise
    raise AssertionError("unreachable")

# ---------- start ----------

async def _check_lockout(db: AsyncSession, participant_id: UUID, now: datetime) -> None:
    """Too many recent violations anywhere blocks opening new attempts."""
    since = as_utc(now) - timedelta(hours=settings.violation_lockout_hours)
    count = await store.recent_violation_count(db, participant_id, since)
    if count > settings.violation_lockout_threshold:
        log.warning("session_start_restricted", participant_id=str(participant_id), recent_violations=count)
        raise AccessRestricted(
            f"{count} violations in the last {settings.violation_lockout_hours}h",
            recent_violations=count, retry_after_hours=settings.violation_lockout_hours,
        )

async def start_session(
    db: AsyncSession,
    *,
    participant_id: UUID,
    quiz_id: UUID,
    client_meta: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> StartSessionResponse:
    """
    Open (or resume) the participant's attempt at a quiz.

    Priced quizzes are escrowed inside the same database transaction that
    inserts the session, so either the session and its three ledger rows
    all exist afterwards or none of them do.
    """
    now = now or utcnow()
    quiz = await catalog.load_quiz(db, quiz_id, now=now)

    async with transaction_lock(db, attempt_key(participant_id, quiz_id)):
        try:
            existing = await store.find_live(db, participant_id, quiz_id)
            if existing is not None:
                if not store.check_deadline(existing, now, mutating=False):
                    await db.commit()
                    log.info("session_resumed", session_id=str(existing.id), participant_id=str(participant_id))
                    return _start_response(existing, quiz, now, resumed=True)
                # Overdue attempt is abandoned; this call opens a fresh one
                await db.flush()

            await _check_lockout(db, participant_id, now)

            record = await store.create_pending(
                db, participant_id=participant_id, quiz=quiz, now=now, client_meta=client_meta,
            )
            if quiz.is_priced:
                try:
                    txs = await ledger.escrow_session_charge(
                        db,
                        participant_id=participant_id,
                        creator_id=quiz.creator_id,
                        price=quiz.price,
                        quiz_id=quiz.id,
                        session_id=record.id,
                    )
                except InsufficientFunds as e:
                    raise PaymentRequired(
                        f"quiz {quiz.id} costs {quiz.price}",
                        required=quiz.price, **e.context,
                    ) from e
                record.payment_correlation_id = txs[0].correlation_id
            store.activate(record, now)
            await db.commit()
        except DuplicateSession:
            # Lost the create race to another process: hand back the winner
            await db.rollback()
            existing = await store.find_live(db, participant_id, quiz_id)
            if existing is None:
                raise
            await db.commit()
            return _start_response(existing, quiz, now, resumed=True)
        except BaseException:
            await db.rollback()
            raise

    log.info(
        "session_started",
        session_id=str(record.id), participant_id=str(participant_id), quiz_id=str(quiz_id),
        priced=quiz.is_priced, deadline=as_utc(record.deadline_at).isoformat(),
    )
    return _start_response(record, quiz, now, resumed=False)

# ---------- violations ----------

async def record_violation(
    db: AsyncSession,
    *,
    session_id: UUID,
    participant_id: UUID | None,
    kind: str,
    detail: str = "",
    now: datetime | None = None,
) -> ViolationOutcome:
    now = now or utcnow()
    retry_verdict = False

    async def work() -> tuple[AssessmentSession, integrity.ViolationDecision | None]:
        nonlocal retry_verdict
        record = await store.get(db, session_id, participant_id=participant_id, for_update=True)
        if record.is_terminal:
            raise SessionTerminal(f"session {record.id} is {record.state}", state=record.state)
        if store.check_deadline(record, now, mutating=True):
            _, retry_verdict = _evaluate_best_effort(record)
            return record, None
        decision = integrity.record_violation(
            record, kind=kind, detail=detail, now=now,
            policy=QuizPolicy.model_validate(record.policy or {}),
        )
        if decision.forced:
            store.auto_end(record, now, f"violation:{decision.rule}")
            _, retry_verdict = _evaluate_best_effort(record)
            log.warning("session_auto_ended", session_id=str(record.id), rule=decision.rule)
        return record, decision

    record, decision = await _serialized(db, session_id, work)
    if retry_verdict:
        enqueue_reevaluation(record.id)
    if decision is None:
        raise SessionExpired(f"session {record.id} passed its deadline", state=record.state)
    return ViolationOutcome(
        accepted=True,
        forced=decision.forced,
        state=record.state,
        total_violations=len(record.violations or []),
        rule=decision.rule,
    )

# ---------- submit ----------

async def submit_session(
    db: AsyncSession,
    *,
    session_id: UUID,
    participant_id: UUID | None,
    answers: list[SubmittedAnswer],
    now: datetime | None = None,
) -> SubmitResult:
    now = now or utcnow()
    retry_verdict = False

    async def work():
        nonlocal retry_verdict
        record = await store.get(db, session_id, participant_id=participant_id, for_update=True)
        if record.is_terminal:
            raise SessionTerminal(f"session {record.id} is {record.state}", state=record.state)
        if store.check_deadline(record, now, mutating=True):
            _, retry_verdict = _evaluate_best_effort(record)
            return record, None, None, []
        questions = await catalog.load_answer_key(db, record.quiz_id)
        card = scoring.score_answers(questions, answers)
        store.complete(record, now, card)
        verdict, retry_verdict = _evaluate_best_effort(record)
        return record, card, verdict, questions

    record, card, verdict, questions = await _serialized(db, session_id, work)
    if retry_verdict:
        enqueue_reevaluation(record.id)
    if card is None:
        raise SessionExpired(f"session {record.id} passed its deadline", state=record.state)

    log.info(
        "session_submitted",
        session_id=str(record.id), score=card.score, correct=card.correct_count,
        total=card.total_questions, recommendation=verdict.recommendation if verdict else None,
    )

    review = None
    if QuizPolicy.model_validate(record.policy or {}).show_results:
        given = {a["question_id"]: a for a in card.answers}
        review = [
            AnswerReview(
                question_id=q.id,
                answer=(given.get(str(q.id)) or {}).get("answer"),
                is_correct=bool((given.get(str(q.id)) or {}).get("is_correct")),
                correct_answer=q.correct_answer,
                explanation=q.explanation,
            ) for q in questions
        ]

    return SubmitResult(
        session_id=record.id,
        state=record.state,
        score=card.score,
        correct_count=card.correct_count,
        total_questions=card.total_questions,
        accuracy=card.accuracy,
        duration_ms=int(record.duration_ms or 0),
        risk_recommendation=verdict.recommendation if verdict else None,
        flagged=record.flagged,
        review=review,
    )

# ---------- reads ----------

def to_public(record: AssessmentSession) -> SessionPublic:
    return SessionPublic(
        id=record.id,
        quiz_id=record.quiz_id,
        participant_id=record.participant_id,
        state=record.state,
        started_at=as_utc(record.started_at),
        deadline=as_utc(record.deadline_at),
        ended_at=as_utc(record.ended_at) if record.ended_at else None,
        duration_ms=record.duration_ms,
        end_reason=record.end_reason,
        question_count=record.question_count,
        score=record.score,
        correct_count=record.correct_count,
        violations=[ViolationPublic.model_validate(v) for v in (record.violations or [])],
        violation_counts=dict(record.violation_counts or {}),
        dropped_violation_count=int(record.dropped_violation_count or 0),
        flagged=record.flagged,
        risk_score=record.risk_score,
        risk_recommendation=record.risk_recommendation,
    )

async def get_session(
    db: AsyncSession,
    *,
    session_id: UUID,
    participant_id: UUID | None,
    now: datetime | None = None,
) -> SessionPublic:
    now = now or utcnow()

    async def work():
        record = await store.get(db, session_id, participant_id=participant_id, for_update=True)
        store.check_deadline(record, now, mutating=False)
        return record

    return to_public(await _serialized(db, session_id, work))

async def get_verdict(
    db: AsyncSession,
    *,
    session_id: UUID,
    participant_id: UUID | None = None,
    now: datetime | None = None,
) -> RiskVerdict:
    """Recompute the verdict from stored history. Same history, same verdict."""
    now = now or utcnow()

    async def work():
        record = await store.get(db, session_id, participant_id=participant_id, for_update=True)
        store.check_deadline(record, now, mutating=False)
        if not record.is_terminal:
            raise SessionNotTerminal(f"session {record.id} is still {record.state}", state=record.state)
        verdict = risk.evaluate(risk.inputs_from_session(record))
        store.apply_verdict(record, verdict)
        return verdict

    return await _serialized(db, session_id, work)
