"""Outbound notification channels (transactional email)."""

from __future__ import annotations

from course_platform.channels.dispatcher import NotificationDispatcher
from course_platform.channels.email import ResendEmailSender
from course_platform.channels.protocol import EmailMessage, EmailSender, SendResult
from course_platform.config import get_settings

_sender: EmailSender | None = None


def get_email_sender() -> EmailSender:
    """Get or create the global email sender."""
    global _sender
    if _sender is None:
        _sender = ResendEmailSender()
    return _sender


def set_email_sender(sender: EmailSender | None) -> None:
    global _sender
    _sender = sender


def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(get_email_sender(), get_settings().login_url)


__all__ = [
    "EmailMessage",
    "EmailSender",
    "NotificationDispatcher",
    "ResendEmailSender",
    "SendResult",
    "get_dispatcher",
    "get_email_sender",
    "set_email_sender",
]
