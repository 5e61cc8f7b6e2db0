import logging
import secrets
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import learnhub.models as models
from learnhub import config
from learnhub.database import utcnow

logger = logging.getLogger(__name__)


def generate_code() -> str:
    return f"{secrets.randbelow(10000):04d}"


class OtpStore:
    """One-time codes keyed by (user, purpose).

    Only the most recently issued code for a key is valid: ``issue`` overwrites
    the row in place, and ``verify`` deletes it once it has been used.
    """

    def __init__(self, db: Session, ttl: timedelta | None = None, clock=utcnow):
        self.db = db
        self.ttl = ttl or timedelta(minutes=config.OTP_TTL_MINUTES)
        self.clock = clock

    def _get(self, user_id: int, purpose: models.OtpPurpose) -> models.EmailOtp | None:
        return (
            self.db.query(models.EmailOtp)
            .filter(models.EmailOtp.user_id == user_id, models.EmailOtp.purpose == purpose)
            .first()
        )

    def issue(self, user_id: int, purpose: models.OtpPurpose) -> str:
        code = generate_code()
        expires_at = self.clock() + self.ttl

        record = self._get(user_id, purpose)
        if record is None:
            self.db.add(models.EmailOtp(user_id=user_id, purpose=purpose, code=code, expires_at=expires_at))
            try:
                self.db.commit()
            except IntegrityError:
                # Lost a race with a concurrent issue for the same key; overwrite its row
                self.db.rollback()
                record = self._get(user_id, purpose)
                if record is None:
                    raise
        if record is not None:
            record.code = code
            record.expires_at = expires_at
            self.db.commit()

        logger.info("Issued %s OTP for user %s", purpose.value, user_id)
        return code

    def verify(self, user_id: int, purpose: models.OtpPurpose, code: str) -> bool:
        record = self._get(user_id, purpose)
        if record is None or record.code != code:
            return False
        if record.expires_at <= self.clock():
            return False
        self.db.delete(record)
        self.db.commit()
        return True
