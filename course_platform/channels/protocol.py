"""Email channel protocol: message, send result and sender interface."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass
class EmailMessage:
    """A rendered email ready for delivery."""
    to: str
    subject: str
    html: str
    text: str = ""
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class SendResult:
    """Result of sending an email."""
    success: bool
    error: str = ""
    message_id: str = ""  # Provider message ID


@runtime_checkable
class EmailSender(Protocol):
    """Protocol for transactional email backends.

    ``send`` reports failures through ``SendResult`` and does not raise.
    """

    @property
    def is_configured(self) -> bool: ...

    def send(self, message: EmailMessage) -> SendResult: ...
