"""Quiz submission grading and the per-question option invariants."""

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import learnhub.models as models
from learnhub.database import utcnow
from learnhub.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ALREADY_SUBMITTED = "You have already submitted this quiz"


@dataclass
class ScoreResult:
    score: int
    total: int
    percentage: float


def percentage(score: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(score / total * 100, 2)


class QuizGradingEngine:
    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.clock = clock

    def has_submitted(self, user_id: int, quiz_id: int) -> bool:
        return (
            self.db.query(models.UserQuizScore.id)
            .filter(models.UserQuizScore.user_id == user_id, models.UserQuizScore.quiz_id == quiz_id)
            .first()
            is not None
        )

    def submit(self, user_id: int, quiz_id: int, answers: Iterable[tuple[int, str]]) -> ScoreResult:
        """Grade one attempt and record it.

        ``answers`` is a sequence of ``(question_id, selected_label)``. The total
        is the number of answers given, not the number of questions on the quiz.
        """
        answers = list(answers)
        if self.db.get(models.Quiz, quiz_id) is None:
            raise NotFoundError("Quiz not found")
        if self.has_submitted(user_id, quiz_id):
            raise ConflictError(ALREADY_SUBMITTED)

        question_ids = {qid for qid, _ in answers}
        known = {
            qid
            for (qid,) in self.db.query(models.Question.id).filter(
                models.Question.quiz_id == quiz_id, models.Question.id.in_(question_ids)
            )
        }
        missing = sorted(question_ids - known)
        if missing:
            raise ValidationError(f"Questions {missing} do not belong to this quiz")

        correct = {
            (qid, label)
            for qid, label in self.db.query(models.Option.question_id, models.Option.label).filter(
                models.Option.question_id.in_(question_ids), models.Option.is_correct.is_(True)
            )
        }
        score = sum(1 for qid, label in answers if (qid, label) in correct)
        total = len(answers)
        result = ScoreResult(score=score, total=total, percentage=percentage(score, total))

        self.db.add(
            models.UserQuizScore(
                user_id=user_id,
                quiz_id=quiz_id,
                score=result.score,
                total_questions=result.total,
                percentage=result.percentage,
                submitted_at=self.clock(),
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent submission got there first
            self.db.rollback()
            raise ConflictError(ALREADY_SUBMITTED)

        logger.info("User %s scored %s/%s on quiz %s", user_id, score, total, quiz_id)
        return result

    # --- Options ---
    def _check_option(self, question_id: int, label: str, is_correct: bool, exclude_id: int | None = None) -> None:
        siblings = self.db.query(models.Option).filter(models.Option.question_id == question_id)
        if exclude_id is not None:
            siblings = siblings.filter(models.Option.id != exclude_id)
        if siblings.filter(models.Option.label == label).first():
            raise ConflictError(f"Option with label {label} already exists for this question")
        if is_correct and siblings.filter(models.Option.is_correct.is_(True)).first():
            raise ConflictError("This question already has a correct option")

    def _commit_option(self, option: models.Option) -> models.Option:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Option conflicts with another option of this question")
        self.db.refresh(option)
        return option

    def add_option(self, question_id: int, label: str, text: str, is_correct: bool) -> models.Option:
        if self.db.get(models.Question, question_id) is None:
            raise NotFoundError("Question not found")
        self._check_option(question_id, label, is_correct)
        option = models.Option(question_id=question_id, label=label, text=text, is_correct=is_correct)
        self.db.add(option)
        return self._commit_option(option)

    def update_option(self, option_id: int, label: str, text: str, is_correct: bool) -> models.Option:
        option = self.db.get(models.Option, option_id)
        if option is None:
            raise NotFoundError("Option not found")
        self._check_option(option.question_id, label, is_correct, exclude_id=option.id)
        option.label = label
        option.text = text
        option.is_correct = is_correct
        return self._commit_option(option)
