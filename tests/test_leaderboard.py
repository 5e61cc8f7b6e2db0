from datetime import datetime

import pytest

import learnhub.models as models
from learnhub.errors import NotFoundError
from learnhub.leaderboard import LeaderboardService

from conftest import make_quiz, make_user


def add_score(db, user, quiz, percentage, submitted_at, score=None, total=10):
    db.add(
        models.UserQuizScore(
            user_id=user.id,
            quiz_id=quiz.id,
            score=score if score is not None else round(percentage / 10),
            total_questions=total,
            percentage=percentage,
            submitted_at=submitted_at,
        )
    )
    db.commit()


@pytest.fixture
def quiz(db, admin):
    return make_quiz(db, admin, ["A"])


@pytest.fixture
def players(db):
    return [make_user(db, f"p{i}@x.com", name=f"Player {i}") for i in range(3)]


def test_orders_by_percentage_then_earliest_submission(db, quiz, players):
    ten, nine, eleven = players
    add_score(db, ten, quiz, 80.0, datetime(2025, 7, 19, 10, 0))
    add_score(db, nine, quiz, 80.0, datetime(2025, 7, 19, 9, 0))
    add_score(db, eleven, quiz, 90.0, datetime(2025, 7, 19, 11, 0))

    entries = LeaderboardService(db).rank(quiz.id)

    assert [(e.percentage, e.submitted_at.hour) for e in entries] == [(90.0, 11), (80.0, 9), (80.0, 10)]
    assert [e.user_id for e in entries] == [eleven.id, nine.id, ten.id]


def test_only_scores_of_that_quiz(db, admin, quiz, players):
    other = make_quiz(db, admin, ["B"], title="Other")
    add_score(db, players[0], quiz, 50.0, datetime(2025, 7, 19, 9, 0))
    add_score(db, players[1], other, 100.0, datetime(2025, 7, 19, 9, 0))

    entries = LeaderboardService(db).rank(quiz.id)

    assert [e.user_id for e in entries] == [players[0].id]


def test_empty_leaderboard(db, quiz):
    assert LeaderboardService(db).rank(quiz.id) == []


def test_unknown_quiz(db):
    with pytest.raises(NotFoundError):
        LeaderboardService(db).rank(404)


def test_leaderboard_http_assigns_positions(client, db, quiz, players, member_headers):
    add_score(db, players[0], quiz, 70.0, datetime(2025, 7, 19, 9, 0))
    add_score(db, players[1], quiz, 95.5, datetime(2025, 7, 19, 9, 30))

    response = client.get(f"/quizzes/{quiz.id}/leaderboard", headers=member_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["quiz"]["id"] == quiz.id
    assert [(row["rank"], row["user_name"], row["percentage"]) for row in body["leaderboard"]] == [
        (1, "Player 1", 95.5),
        (2, "Player 0", 70.0),
    ]


def test_my_quiz_scores_newest_first(client, db, admin, member, member_headers):
    first = make_quiz(db, admin, ["A"], title="First")
    second = make_quiz(db, admin, ["A"], title="Second")
    add_score(db, member, first, 60.0, datetime(2025, 7, 19, 9, 0))
    add_score(db, member, second, 40.0, datetime(2025, 7, 20, 9, 0))

    response = client.get("/my-quiz-scores", headers=member_headers)

    assert response.status_code == 200
    assert [row["quiz_title"] for row in response.json()] == ["Second", "First"]
