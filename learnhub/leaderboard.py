from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

import learnhub.models as models
from learnhub.errors import NotFoundError


@dataclass
class LeaderboardEntry:
    user_id: int
    user_name: str
    user_photo: str | None
    score: int
    total_questions: int
    percentage: float
    submitted_at: datetime


class LeaderboardService:
    def __init__(self, db: Session):
        self.db = db

    def rank(self, quiz_id: int) -> list[LeaderboardEntry]:
        """Scores for a quiz, best percentage first; earlier submissions win ties."""
        if self.db.get(models.Quiz, quiz_id) is None:
            raise NotFoundError("Quiz not found")
        rows = (
            self.db.query(models.UserQuizScore, models.User)
            .join(models.User, models.User.id == models.UserQuizScore.user_id)
            .filter(models.UserQuizScore.quiz_id == quiz_id)
            .order_by(
                models.UserQuizScore.percentage.desc(),
                models.UserQuizScore.submitted_at.asc(),
                models.UserQuizScore.id.asc(),
            )
            .all()
        )
        return [
            LeaderboardEntry(
                user_id=user.id,
                user_name=user.name,
                user_photo=user.photo,
                score=s.score,
                total_questions=s.total_questions,
                percentage=s.percentage,
                submitted_at=s.submitted_at,
            )
            for s, user in rows
        ]

    def user_scores(self, user_id: int) -> list[models.UserQuizScore]:
        return (
            self.db.query(models.UserQuizScore)
            .filter(models.UserQuizScore.user_id == user_id)
            .order_by(models.UserQuizScore.submitted_at.desc(), models.UserQuizScore.id.desc())
            .all()
        )
