import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from learnhub import config
from learnhub.errors import UpstreamError
from learnhub.models import OtpPurpose

logger = logging.getLogger(__name__)

SUBJECTS = {
    OtpPurpose.register: "Your registration OTP code",
    OtpPurpose.forgot_password: "Your password reset OTP code",
}


class Mailer(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> None: ...


def otp_message(code: str, purpose: OtpPurpose) -> tuple[str, str]:
    minutes = config.OTP_TTL_MINUTES
    if purpose is OtpPurpose.forgot_password:
        body = f"<p>Your password reset OTP is <b>{code}</b>. It expires in {minutes} minutes.</p>"
    else:
        body = f"<p>Your OTP is <b>{code}</b>. It expires in {minutes} minutes.</p>"
    return SUBJECTS[purpose], body


class SmtpMailer:
    def __init__(self, host=None, port=None, username=None, password=None, sender=None, timeout=None):
        self.host = host or config.SMTP_HOST
        self.port = port or config.SMTP_PORT
        self.username = username if username is not None else config.SMTP_USERNAME
        self.password = password if password is not None else config.SMTP_PASSWORD
        self.sender = sender or config.MAIL_FROM
        self.timeout = timeout or config.SMTP_TIMEOUT

    def send(self, to_address: str, subject: str, body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to_address
        msg.attach(MIMEText(body, "html"))

        try:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as server:
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(self.sender, to_address, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send to %s failed: %s", to_address, e)
            raise UpstreamError("Failed to send email") from e
