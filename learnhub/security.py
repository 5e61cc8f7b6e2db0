import hashlib
import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

import learnhub.models as models
from learnhub.database import utcnow


# --- Password hashing helpers ---
def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return check_password_hash(hashed_password, password)


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class TokenIssuer:
    """Opaque bearer tokens. Only the sha256 of a token is stored."""

    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.clock = clock

    def mint(self, user_id: int, ttl: timedelta) -> tuple[str, datetime]:
        token = secrets.token_urlsafe(40)
        expires_at = self.clock() + ttl
        self.db.add(models.AccessToken(user_id=user_id, token_hash=_digest(token), expires_at=expires_at))
        self.db.commit()
        return token, expires_at

    def revoke_all(self, user_id: int) -> int:
        count = (
            self.db.query(models.AccessToken)
            .filter(models.AccessToken.user_id == user_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return count

    def resolve(self, token: str) -> models.User | None:
        row = (
            self.db.query(models.AccessToken)
            .filter(models.AccessToken.token_hash == _digest(token))
            .first()
        )
        if not row or row.expires_at <= self.clock():
            return None
        return row.user
