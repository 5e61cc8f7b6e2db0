"""Pytest configuration and fixtures.

The app runs against an in-memory SQLite database shared through a single
connection. Mail, file storage and the chat model are replaced with local
fakes through FastAPI dependency overrides.
"""

import os
import re
from datetime import timedelta

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import learnhub.models as models
from learnhub.database import get_db, utcnow
from learnhub.errors import UpstreamError
from learnhub.main import app, get_chat_client, get_file_store, get_mailer
from learnhub.security import TokenIssuer, hash_password
from learnhub.storage import LocalFileStore

PASSWORD = "secret1"


class FakeMailer:
    """Records messages instead of sending them."""

    def __init__(self):
        self.sent = []

    def send(self, to_address, subject, body):
        self.sent.append((to_address, subject, body))

    def last_code(self, to_address=None):
        for to, _, body in reversed(self.sent):
            if to_address is None or to == to_address:
                return re.search(r"<b>(\d{4})</b>", body).group(1)
        raise AssertionError(f"no mail sent to {to_address}")


class FailingMailer:
    def send(self, to_address, subject, body):
        raise UpstreamError("Failed to send email")


class FakeChatClient:
    def __init__(self, reply="Photosynthesis turns light into chemical energy."):
        self.reply = reply
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    models.Base.metadata.create_all(bind=engine)
    yield engine
    models.Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def files(tmp_path):
    return LocalFileStore(tmp_path / "storage")


@pytest.fixture
def chat_client():
    return FakeChatClient()


@pytest.fixture
def client(db, mailer, files, chat_client):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_file_store] = lambda: files
    app.dependency_overrides[get_chat_client] = lambda: chat_client
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email, role=models.Role.member, name=None, password=PASSWORD, verified=True):
    user = models.User(
        name=name or email.split("@")[0].title(),
        email=email,
        hashed_password=hash_password(password),
        phone="0800",
        photo="storage/profile/default.png",
        role=role,
    )
    if verified:
        user.email_verified_at = utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def on_disk(files, path_reference):
    """Whether a ``storage/...`` reference names a file under the store root."""
    return os.path.isfile(os.path.join(files.root, path_reference[len("storage/"):]))


def headers_for(db, user):
    token, _ = TokenIssuer(db).mint(user.id, timedelta(days=1))
    return {"Authorization": f"Bearer {token}"}


def make_quiz(db, creator, correct_labels, title="Cells"):
    """Quiz with one question per entry in ``correct_labels``, each with options A-D."""
    quiz = models.Quiz(title=title, description="Biology basics", created_by=creator.id)
    db.add(quiz)
    db.flush()
    for i, correct in enumerate(correct_labels, start=1):
        question = models.Question(quiz_id=quiz.id, question_text=f"Question {i}?")
        db.add(question)
        db.flush()
        for label in models.OPTION_LABELS:
            db.add(
                models.Option(
                    question_id=question.id,
                    label=label,
                    text=f"Answer {label}",
                    is_correct=label == correct,
                )
            )
    db.commit()
    db.refresh(quiz)
    return quiz


@pytest.fixture
def member(db):
    return make_user(db, "ann@x.com", name="Ann")


@pytest.fixture
def admin(db):
    return make_user(db, "root@x.com", role=models.Role.admin, name="Root")


@pytest.fixture
def member_headers(db, member):
    return headers_for(db, member)


@pytest.fixture
def admin_headers(db, admin):
    return headers_for(db, admin)
