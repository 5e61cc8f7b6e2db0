"""Account lifecycle: registration with email OTP, login, password reset and profile."""

import logging
from datetime import datetime, timedelta

from fastapi import UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import learnhub.models as models
from learnhub import config
from learnhub.crud import save_with_uploads
from learnhub.database import utcnow
from learnhub.errors import AuthError, ExpiredError, NotFoundError, ValidationError
from learnhub.mailer import Mailer, otp_message
from learnhub.otp import OtpStore
from learnhub.security import TokenIssuer, hash_password, verify_password
from learnhub.storage import IMAGE_EXTENSIONS, IMAGE_MAX_BYTES, FileStore

logger = logging.getLogger(__name__)


def check_password(password: str, confirmation: str | None = None) -> None:
    if len(password) < config.PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {config.PASSWORD_MIN_LENGTH} characters")
    if confirmation is not None and password != confirmation:
        raise ValidationError("Password confirmation does not match")


class AuthService:
    def __init__(
        self,
        db: Session,
        mailer: Mailer,
        tokens: TokenIssuer | None = None,
        otps: OtpStore | None = None,
    ):
        self.db = db
        self.mailer = mailer
        self.tokens = tokens or TokenIssuer(db)
        self.otps = otps or OtpStore(db)

    def get_by_email(self, email: str) -> models.User | None:
        return self.db.query(models.User).filter(models.User.email == email.lower()).first()

    def _require_by_email(self, email: str) -> models.User:
        user = self.get_by_email(email)
        if not user:
            raise NotFoundError("User not found")
        return user

    def _send_otp(self, user: models.User, purpose: models.OtpPurpose) -> None:
        code = self.otps.issue(user.id, purpose)
        subject, body = otp_message(code, purpose)
        self.mailer.send(user.email, subject, body)

    # --- Registration ---
    def register(self, name: str, email: str, password: str, phone: str) -> models.User:
        check_password(password)
        if self.get_by_email(email):
            raise ValidationError("Email already registered")

        user = models.User(
            name=name,
            email=email.lower(),
            hashed_password=hash_password(password),
            phone=phone,
            photo=config.DEFAULT_PHOTO,
            role=models.Role.member,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValidationError("Email already registered")
        self.db.refresh(user)
        logger.info("Registered user %s", user.id)

        self._send_otp(user, models.OtpPurpose.register)
        return user

    def verify_registration(self, email: str, code: str) -> models.User:
        user = self._require_by_email(email)
        if not self.otps.verify(user.id, models.OtpPurpose.register, code):
            raise ExpiredError()
        user.email_verified_at = utcnow()
        self.db.commit()
        self.db.refresh(user)
        return user

    def resend_registration_otp(self, email: str) -> None:
        user = self._require_by_email(email)
        if user.email_verified_at:
            raise ValidationError("Email already verified")
        self._send_otp(user, models.OtpPurpose.register)

    # --- Sessions ---
    def login(self, email: str, password: str) -> tuple[str, datetime, models.User]:
        user = self.get_by_email(email)
        if not user or not verify_password(password, user.hashed_password):
            logger.info("Failed login for %s", email)
            raise AuthError("Invalid email or password")

        # Single active session: drop every earlier token before minting
        self.tokens.revoke_all(user.id)
        token, expires_at = self.tokens.mint(user.id, timedelta(days=config.TOKEN_TTL_DAYS))
        return token, expires_at, user

    def logout(self, user: models.User) -> None:
        self.tokens.revoke_all(user.id)

    # --- Password reset ---
    def forgot_password(self, email: str) -> None:
        user = self._require_by_email(email)
        self._send_otp(user, models.OtpPurpose.forgot_password)

    def verify_forgot_otp(self, email: str, code: str) -> None:
        user = self._require_by_email(email)
        if not self.otps.verify(user.id, models.OtpPurpose.forgot_password, code):
            raise ExpiredError()

    def reset_password(self, email: str, password: str, confirmation: str) -> None:
        """Set a new password.

        Callers sequence forgot_password -> verify_forgot_otp -> reset_password;
        nothing here records that the code was verified.
        """
        check_password(password, confirmation)
        user = self._require_by_email(email)
        user.hashed_password = hash_password(password)
        self.db.commit()
        logger.info("Password reset for user %s", user.id)

    # --- Profile ---
    def update_profile(
        self,
        user: models.User,
        files: FileStore,
        name: str | None = None,
        phone: str | None = None,
        photo: UploadFile | None = None,
    ) -> models.User:
        if name is not None:
            if not name.strip():
                raise ValidationError("Name must not be empty")
            user.name = name.strip()
        if phone is not None:
            user.phone = phone.strip()
        uploads = {"photo": (photo, "profile", IMAGE_EXTENSIONS, IMAGE_MAX_BYTES)}
        return save_with_uploads(self.db, files, user, uploads)
