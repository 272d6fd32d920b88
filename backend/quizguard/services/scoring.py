from __future__ import annotations
from dataclasses import dataclass, field
from quizguard.schemas.answer import Answer
from quizguard.schemas.quiz import QuestionKey
from quizguard.schemas.session import SubmittedAnswer

@dataclass
class ScoreCard:
    answers: list[dict] = field(default_factory=list)
    score: int = 0
    correct_count: int = 0
    skipped_count: int = 0
    total_questions: int = 0

    @property
    def accuracy(self) -> float:
        """Percentage of the question set answered correctly."""
        if self.total_questions <= 0:
            return 0.0
        return round(self.correct_count * 100 / self.total_questions, 2)

def _normalize(text: str) -> str:
    return " ".join(text.split()).casefold()

def is_correct(key: Answer, answer: Answer | None) -> bool:
    if answer is None or answer.kind != key.kind:
        return False
    if key.kind == "choice":
        return answer.index == key.index
    return _normalize(answer.value) == _normalize(key.value)

def score_answers(questions: list[QuestionKey], submitted: list[SubmittedAnswer]) -> ScoreCard:
    """
    Grade against the authoritative key. Answers to questions outside the
    set are ignored; a repeated question keeps its last answer.
    """
    by_id = {q.id: q for q in questions}
    latest: dict = {}
    for a in submitted:
        if a.question_id in by_id:
            latest.pop(a.question_id, None)
            latest[a.question_id] = a

    card = ScoreCard(total_questions=len(questions))
    for qid, a in latest.items():
        q = by_id[qid]
        ok = is_correct(q.correct_answer, a.answer)
        if ok:
            card.correct_count += 1
            card.score += q.points
        if a.answer is None:
            card.skipped_count += 1
        card.answers.append({
            "question_id": str(qid),
            "answer": a.answer.model_dump() if a.answer is not None else None,
            "time_spent": float(a.time_spent),
            "is_correct": ok,
            "option_count": len(q.options),
        })
    return card
