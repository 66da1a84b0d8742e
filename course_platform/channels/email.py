"""Transactional email via the Resend HTTP API, plus message templates.

Credentials from settings: RESEND_API_KEY, EMAIL_FROM.

Security: the API key is sent as a bearer header and never logged. Every
interpolated value is HTML-escaped.
"""

from __future__ import annotations

import html
import logging

import httpx

from course_platform.channels.protocol import EmailMessage, SendResult
from course_platform.config import Settings, get_settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

_WRAPPER = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #4f46e5; padding: 24px; border-radius: 8px 8px 0 0; text-align: center;">
        <h1 style="color: white; margin: 0; font-size: 22px;">{heading}</h1>
    </div>
    <div style="background: white; padding: 24px; border-radius: 0 0 8px 8px;">
        {body}
        <p style="color: #999; font-size: 12px; margin-top: 24px; text-align: center;">
            This message was sent automatically. Please do not reply.
        </p>
    </div>
</div>
"""

_BUTTON = (
    '<p style="text-align: center; margin: 24px 0;">'
    '<a href="{href}" style="background: #4f46e5; color: white; padding: 12px 24px; '
    'text-decoration: none; border-radius: 5px; font-weight: bold;">{label}</a></p>'
)


def _button(href: str, label: str) -> str:
    return _BUTTON.format(href=html.escape(href, quote=True), label=html.escape(label))


def render_credentials_email(to: str, password: str, login_url: str, first_name: str = "") -> EmailMessage:
    """Login details for an account created from an order."""
    greeting = f"Hi {html.escape(first_name)}," if first_name else "Hi,"
    body = (
        f"<p>{greeting}</p>"
        "<p>An account has been created for you so you can access the courses you purchased.</p>"
        f"<p><strong>Email:</strong> {html.escape(to)}<br>"
        f"<strong>Password:</strong> {html.escape(password)}</p>"
        "<p>Please change your password after your first login.</p>"
        + _button(login_url, "Log in")
    )
    text = (
        f"An account has been created for you.\n\nEmail: {to}\nPassword: {password}\n\n"
        f"Log in at {login_url} and change your password after your first login."
    )
    return EmailMessage(
        to=to,
        subject="Your course account login details",
        html=_WRAPPER.format(heading="Welcome!", body=body),
        text=text,
        tags={"category": "credentials"},
    )


def render_welcome_email(to: str, course_name: str, login_url: str, first_name: str = "") -> EmailMessage:
    """Enrollment confirmation naming the course."""
    greeting = f"Hi {html.escape(first_name)}," if first_name else "Hi,"
    body = (
        f"<p>{greeting}</p>"
        f"<p>You now have access to <strong>{html.escape(course_name)}</strong>.</p>"
        + _button(login_url, "Go to your courses")
    )
    return EmailMessage(
        to=to,
        subject=f"Welcome to {course_name}",
        html=_WRAPPER.format(heading="Enrollment confirmed", body=body),
        text=f"You now have access to {course_name}. Log in at {login_url}",
        tags={"category": "welcome"},
    )


def render_password_reset_email(to: str, reset_link: str) -> EmailMessage:
    body = (
        "<p>We received a request to reset the password of your account.</p>"
        + _button(reset_link, "Set a new password")
        + "<ul style=\"color: #666;\">"
        "<li>The link is valid for 1 hour.</li>"
        "<li>If you did not request a reset, you can ignore this message.</li>"
        "</ul>"
    )
    return EmailMessage(
        to=to,
        subject="Password reset",
        html=_WRAPPER.format(heading="Password reset", body=body),
        text=f"Set a new password: {reset_link}\nThe link is valid for 1 hour.",
        tags={"category": "password_reset"},
    )


class ResendEmailSender:
    """Email delivery through Resend's REST endpoint."""

    def __init__(self, settings: Settings | None = None, http: httpx.Client | None = None):
        self._settings = settings or get_settings()
        self._http = http or httpx.Client(timeout=15.0)

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.resend_api_key and self._settings.email_from)

    def send(self, message: EmailMessage) -> SendResult:
        if not self.is_configured:
            return SendResult(success=False, error="Email not configured (missing RESEND_API_KEY)")

        payload = {
            "from": self._settings.email_from,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text
        if message.tags:
            payload["tags"] = [{"name": k, "value": v} for k, v in message.tags.items()]

        try:
            resp = self._http.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self._settings.resend_api_key}"},
            )
        except httpx.HTTPError as e:
            return SendResult(success=False, error=f"Resend unreachable: {type(e).__name__}")

        if resp.status_code >= 400:
            return SendResult(success=False, error=f"Resend HTTP {resp.status_code}: {resp.text[:200]}")
        return SendResult(success=True, message_id=resp.json().get("id", ""))
