"""Notification dispatcher: best-effort account and enrollment emails.

Security contract:
- A failed send is logged and reported as False, never raised
- Generated passwords appear in the credential email only, never in logs
"""

from __future__ import annotations

import logging

from course_platform.channels.email import (
    render_credentials_email,
    render_password_reset_email,
    render_welcome_email,
)
from course_platform.channels.protocol import EmailMessage, EmailSender

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Renders and sends the platform's transactional emails."""

    def __init__(self, sender: EmailSender, login_url: str):
        self._sender = sender
        self._login_url = login_url

    def _deliver(self, message: EmailMessage, kind: str) -> bool:
        try:
            result = self._sender.send(message)
        except Exception:
            logger.exception("Email send crashed: kind=%s to=%s", kind, message.to)
            return False
        if not result.success:
            logger.warning("Email send failed: kind=%s to=%s error=%s", kind, message.to, result.error)
            return False
        logger.info("Email sent: kind=%s to=%s id=%s", kind, message.to, result.message_id)
        return True

    def send_credentials(self, email: str, password: str, first_name: str = "") -> bool:
        return self._deliver(
            render_credentials_email(email, password, self._login_url, first_name), "credentials"
        )

    def send_welcome(self, email: str, course_name: str, first_name: str = "") -> bool:
        return self._deliver(
            render_welcome_email(email, course_name, self._login_url, first_name), "welcome"
        )

    def send_password_reset(self, email: str, reset_link: str) -> bool:
        return self._deliver(render_password_reset_email(email, reset_link), "password_reset")
