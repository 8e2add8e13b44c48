"""Out-of-band delivery of one-time passcodes."""
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from chatapp.core.config import Settings

logger = logging.getLogger(__name__)


class OtpNotifier(Protocol):
    def send_otp(self, email: str, otp: str, ttl_minutes: int) -> None: ...


class LogNotifier:
    """Development notifier: writes the passcode to the log."""

    def send_otp(self, email: str, otp: str, ttl_minutes: int) -> None:
        logger.info("OTP for %s: %s (valid %d min)", email, otp, ttl_minutes)


class SmtpNotifier:
    def __init__(self, host: str, port: int, user: str, password: str, sender: str, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def send_otp(self, email: str, otp: str, ttl_minutes: int) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = email
        msg["Subject"] = "Your login code"
        msg.set_content(
            f"Your one-time login code is {otp}.\n"
            f"It is valid for {ttl_minutes} minutes. Do not share it with anyone."
        )

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            if self.user:
                smtp.login(self.user, self.password)
            smtp.send_message(msg)
        logger.info("OTP mail sent to %s", email)


def notifier_from_settings(settings: Settings) -> OtpNotifier:
    if not settings.SMTP_HOST:
        return LogNotifier()
    return SmtpNotifier(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        user=settings.SMTP_USER,
        password=settings.SMTP_PASSWORD,
        sender=settings.SMTP_SENDER,
    )
