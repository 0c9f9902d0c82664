"""Delivery of password reset and email verification links.

Mail transport is an external collaborator. The application depends on the
``EmailSender`` protocol; the default sender only records that a message
would have gone out.
"""

import logging
from typing import Protocol

from braidarr.config.settings import settings

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    """Sends account lifecycle emails."""

    async def send_password_reset(self, to_email: str, token: str) -> None: ...

    async def send_email_verification(self, to_email: str, token: str) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class LoggingEmailSender:
    """Development sender: logs the delivery without the token."""

    def __init__(self, base_url: str | None = None):
        self.base_url = (base_url or settings.public_base_url).rstrip("/")

    async def send_password_reset(self, to_email: str, token: str) -> None:
        logger.info(f"Password reset link for {redact_email(to_email)}: {self.base_url}/reset-password?token=***")

    async def send_email_verification(self, to_email: str, token: str) -> None:
        logger.info(f"Verification link for {redact_email(to_email)}: {self.base_url}/verify-email?token=***")


_email_sender: EmailSender = LoggingEmailSender()


def get_email_sender() -> EmailSender:
    """Dependency returning the configured email sender."""
    return _email_sender
