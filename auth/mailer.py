"""
auth/mailer.py -- Verification code delivery.

SmtpVerificationSender sends a plain-text email through smtplib (STARTTLS +
login when credentials are set). LoggingVerificationSender is the fallback
when SMTP is not configured: it records that a code was issued and to whom,
but never the code itself.

Both implement identity.ports.VerificationSender: send() returns None on
success and raises on failure. IdentityService decides what a failure means
(one retry after registration, swallowed on resend).
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

logger = logging.getLogger("catalog.mailer")

_SUBJECT = "Verify your account"


def build_verification_message(sender: str, recipient: str, code: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = _SUBJECT
    msg["From"] = sender
    msg["To"] = recipient
    msg.set_content(f"Your verification code is: {code}\n\nIf you did not sign up, ignore this email.")
    return msg


class SmtpVerificationSender:
    """Deliver codes over SMTP. A new connection per message; no pooling."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        from_address: str = "",
        starttls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        if not host or not from_address:
            raise ValueError("SMTP host and from address are required")
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.from_address = from_address
        self.starttls = starttls
        self.timeout = timeout

    def send(self, email: str, code: str) -> None:
        msg = build_verification_message(self.from_address, email, code)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.starttls:
                server.starttls()
            if self.username:
                server.login(self.username, self._password)
            server.send_message(msg)
        logger.info("Verification email sent to %s", email)


class LoggingVerificationSender:
    """No-op delivery for development and SMTP-less deployments."""

    def send(self, email: str, code: str) -> None:
        logger.info("Verification email not sent (SMTP disabled); recipient=%s", email)
