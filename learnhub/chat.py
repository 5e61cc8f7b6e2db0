import logging

import requests
from sqlalchemy.orm import Session

import learnhub.models as models
from learnhub import config
from learnhub.database import utcnow
from learnhub.errors import NotFoundError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)


class ChatClient:
    """Thin proxy to an OpenAI-compatible chat-completions endpoint."""

    def __init__(self, api_key=None, url=None, model=None, timeout=None, system_prompt=None):
        self.api_key = api_key if api_key is not None else config.OPENROUTER_API_KEY
        self.url = url or config.OPENROUTER_URL
        self.model = model or config.CHAT_MODEL
        self.timeout = timeout or config.CHAT_TIMEOUT
        self.system_prompt = system_prompt or config.CHAT_SYSTEM_PROMPT
        self.session = requests.Session()

    def complete(self, prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
        }
        try:
            response = self.session.post(
                self.url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()["choices"][0]["message"]["content"]
        except requests.RequestException as e:
            logger.error("Chat completion request failed: %s", e)
            raise UpstreamError("Chat assistant is unavailable") from e
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("Unexpected chat completion payload: %s", e)
            raise UpstreamError("Chat assistant returned an invalid response") from e


class ChatService:
    def __init__(self, db: Session, client: ChatClient):
        self.db = db
        self.client = client

    def _own_session(self, user: models.User, session_id: int) -> models.ChatSession:
        session = self.db.get(models.ChatSession, session_id)
        if session is None or session.user_id != user.id:
            raise NotFoundError("Chat session not found")
        return session

    def start(self, user: models.User) -> models.ChatSession:
        session = models.ChatSession(user_id=user.id)
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def send(self, user: models.User, session_id: int, prompt: str) -> str:
        session = self._own_session(user, session_id)
        if session.ended_at is not None:
            raise ValidationError("Chat session has ended")
        reply = self.client.complete(prompt)
        self.db.add(models.ChatLog(session_id=session.id, prompt=prompt, response=reply))
        self.db.commit()
        return reply

    def history(self, user: models.User, session_id: int) -> list[models.ChatLog]:
        return list(self._own_session(user, session_id).logs)

    def end(self, user: models.User, session_id: int) -> models.ChatSession:
        session = self._own_session(user, session_id)
        if session.ended_at is None:
            session.ended_at = utcnow()
            self.db.commit()
        return session

    def sessions(self, user: models.User) -> list[tuple[models.ChatSession, str | None]]:
        """The user's sessions, newest first, each with its most recent prompt."""
        sessions = (
            self.db.query(models.ChatSession)
            .filter(models.ChatSession.user_id == user.id)
            .order_by(models.ChatSession.started_at.desc(), models.ChatSession.id.desc())
            .all()
        )
        return [(s, s.logs[-1].prompt if s.logs else None) for s in sessions]
