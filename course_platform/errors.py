"""Exception hierarchy shared by the HTTP layer and the services.

Every error carries the HTTP status the API answers with. Handlers in
``serve.py`` turn them into ``{"error": ..., "details": ...}`` bodies.
"""

from __future__ import annotations

from typing import Any


class PlatformError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str, details: Any = None, status_code: int | None = None):
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class AuthenticationError(PlatformError):
    status_code = 401


class PermissionDenied(PlatformError):
    status_code = 403


class ValidationError(PlatformError):
    status_code = 400


class NotFoundError(PlatformError):
    status_code = 404


class ConflictError(PlatformError):
    status_code = 409


class PersistenceError(PlatformError):
    """The data store rejected or failed a write/read."""

    status_code = 500


class IdentityProviderError(PlatformError):
    """Non-2xx answer (or transport failure) from the identity provider."""

    status_code = 502

    def __init__(self, message: str, details: Any = None, upstream_status: int | None = None):
        self.upstream_status = upstream_status
        super().__init__(message, details)


class NotificationError(PlatformError):
    """Email delivery failed. Never surfaced on the webhook path."""

    status_code = 502
