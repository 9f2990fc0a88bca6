"""Templated account notifications and the dispatchers that deliver them."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from enum import Enum
from typing import Any, Iterable

from .config import Settings
from .security.tokens import OneTimeSecret

logger = logging.getLogger(__name__)


class NotificationTemplate(str, Enum):
    USER_VERIFICATION_REQUESTED = "user_verification_requested"
    ADMIN_USER_VERIFICATION_REQUESTED = "admin_user_verification_requested"
    USER_REGISTERED = "user_registered"
    ADMIN_USER_REGISTERED = "admin_user_registered"
    USER_VERIFIED = "user_verified"
    ADMIN_USER_VERIFIED = "admin_user_verified"
    USER_UPDATED = "user_updated"
    USER_RESET_REQUESTED = "user_reset_requested"
    USER_RESET = "user_reset"
    USER_ACTIVATED = "user_activated"


_BODIES: dict[NotificationTemplate, str] = {
    NotificationTemplate.USER_VERIFICATION_REQUESTED: (
        "Thanks for registering. Confirm your email address with this verification code:\n\n"
        "    {payload}\n\n"
        "Enter it together with your first and last name to activate your account."
    ),
    NotificationTemplate.ADMIN_USER_VERIFICATION_REQUESTED: (
        "{payload} registered and is completing self-verification."
    ),
    NotificationTemplate.USER_REGISTERED: (
        "Your registration was received and is awaiting review by an administrator."
    ),
    NotificationTemplate.ADMIN_USER_REGISTERED: (
        "{payload} registered and is awaiting review."
    ),
    NotificationTemplate.USER_VERIFIED: "Your registration is complete. You can now sign in.",
    NotificationTemplate.ADMIN_USER_VERIFIED: "{payload} completed self-verification.",
    NotificationTemplate.USER_UPDATED: "Your account details were updated.",
    NotificationTemplate.USER_RESET_REQUESTED: (
        "A password reset was requested for your account. Use this code to choose a new password:\n\n"
        "    {payload}\n\n"
        "If you did not request a reset you can ignore this message."
    ),
    NotificationTemplate.USER_RESET: "Your password was changed.",
    NotificationTemplate.USER_ACTIVATED: "Your account has been activated. You can now sign in.",
}


def _recipients(recipients: str | Iterable[str]) -> list[str]:
    if isinstance(recipients, str):
        return [recipients]
    return list(recipients)


def render_body(template: str, payload: Any | None = None) -> str:
    """Render the plain-text body for ``template``.

    A :class:`OneTimeSecret` payload is revealed only here, at the point the
    message leaves the process.
    """
    if isinstance(payload, OneTimeSecret):
        payload = payload.reveal()
    body = _BODIES[NotificationTemplate(template)]
    return body.format(payload="" if payload is None else payload)


class LoggingNotificationDispatcher:
    """Development dispatcher that records notifications in the log instead of sending them."""

    def send(
        self,
        recipients: str | Iterable[str],
        subject: str,
        template: str,
        payload: Any | None = None,
    ) -> None:
        # payload is omitted: it may hold a one-time secret
        logger.info(
            "notification %s to %s: %s",
            NotificationTemplate(template).value,
            ", ".join(_recipients(recipients)),
            subject,
        )


class SmtpNotificationDispatcher:
    """Deliver notifications through an SMTP relay, one connection per message."""

    def __init__(self, host: str, port: int, sender: str, timeout: int = 30) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._timeout = timeout

    def send(
        self,
        recipients: str | Iterable[str],
        subject: str,
        template: str,
        payload: Any | None = None,
    ) -> None:
        to = _recipients(recipients)
        if not to:
            logger.info("notification %s skipped: no recipients", template)
            return
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = ", ".join(to)
        message["Subject"] = subject
        message.set_content(render_body(template, payload))
        with smtplib.SMTP(host=self._host, port=self._port, timeout=self._timeout) as conn:
            conn.send_message(message)
        logger.info("notification %s sent to %d recipient(s)", template, len(to))


def build_dispatcher(settings: Settings) -> LoggingNotificationDispatcher | SmtpNotificationDispatcher:
    """Instantiate the configured notification backend."""
    if settings.notification_backend == "smtp":
        logger.info("notifications delivered via smtp at %s:%s", settings.smtp_host, settings.smtp_port)
        return SmtpNotificationDispatcher(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_sender,
            timeout=settings.smtp_timeout_seconds,
        )
    logger.info("notifications written to the log")
    return LoggingNotificationDispatcher()
