"""Input sanitization and validation for user-supplied text.

Security contract:
- Plain-text fields (comments, names) lose angle brackets, ``javascript:``
  and inline event handlers, and are length-capped
- Rich-text section content keeps its markup but loses ``<script>`` blocks,
  event handlers and dangerous URL schemes
- Emails are trimmed and lowercased before any lookup or comparison
"""

from __future__ import annotations

import re
import uuid

_MAX_TEXT_LENGTH = 1000
_MAX_HTML_LENGTH = 100_000
_MAX_EMAIL_LENGTH = 255

_ANGLE_BRACKETS = re.compile(r"[<>]")
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)
_SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_DANGEROUS_SCHEMES = re.compile(r"(?:javascript|vbscript|data):", re.IGNORECASE)
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_PASSWORD_RULES = [
    (re.compile(r".{8,}", re.DOTALL), "Password must be at least 8 characters long"),
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"\d"), "Password must contain at least one number"),
]


def sanitize_text(value: str, max_length: int = _MAX_TEXT_LENGTH) -> str:
    """Strip markup-bearing characters from a plain-text field."""
    if not isinstance(value, str):
        return ""
    s = value.strip()
    s = _ANGLE_BRACKETS.sub("", s)
    s = _JS_SCHEME.sub("", s)
    s = _EVENT_HANDLER.sub("", s)
    return s[:max_length]


def sanitize_html(value: str, max_length: int = _MAX_HTML_LENGTH) -> str:
    """Remove executable content from rich-text HTML."""
    if not isinstance(value, str):
        return ""
    s = _SCRIPT_BLOCK.sub("", value)
    s = _EVENT_HANDLER.sub("", s)
    s = _DANGEROUS_SCHEMES.sub("", s)
    return s[:max_length]


def sanitize_email(value: str) -> str | None:
    """Normalize an email address. Returns None if it isn't one."""
    if not isinstance(value, str):
        return None
    s = value.strip().lower()
    if len(s) > _MAX_EMAIL_LENGTH or not _EMAIL.match(s):
        return None
    return s


def validate_uuid(value: str) -> bool:
    if not isinstance(value, str):
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


def validate_input_length(value: str, min_length: int = 1, max_length: int = 1000) -> bool:
    """Length check on the trimmed value."""
    if not isinstance(value, str):
        return False
    return min_length <= len(value.strip()) <= max_length


def validate_password_strength(password: str) -> list[str]:
    """Return the list of unmet password rules (empty means acceptable)."""
    if not isinstance(password, str) or not password:
        return ["Password is required"]
    return [message for rule, message in _PASSWORD_RULES if not rule.search(password)]
