"""Request authentication: bearer session tokens and the service key.

Session tokens are the identity provider's HS256 access tokens
(``aud="authenticated"``, ``sub`` = user id). The caller's role comes from
their profile row, never from the token.

Security contract:
- No token -> anonymous actor (endpoints decide whether that is enough)
- Malformed/expired/forged token -> 401, even on public read endpoints
- ``X-API-Key`` equal to the service role key -> admin actor (server-to-server)
- Webhook and login/reset endpoints skip token checks entirely
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Request
from jose import JWTError, jwt

from course_platform.config import Settings, get_settings
from course_platform.errors import AuthenticationError
from course_platform.store.base import DataStore
from course_platform.store.models import Role

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"
_AUDIENCE = "authenticated"

SKIP_METHODS = {"OPTIONS"}

# Endpoints that never look at credentials (exact method + path match)
PUBLIC_ALLOWLIST: set[tuple[str, str]] = {
    ("GET", "/health"),
    ("POST", "/api/auth/login"),
    ("POST", "/api/auth/reset-password"),
    ("POST", "/api/auth/reset-password-confirm"),
}

WEBHOOK_PUBLIC_PREFIXES = ("/api/woocommerce/webhook",)
ADMIN_PREFIX = "/api/admin"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller."""

    user_id: str | None
    email: str = ""
    role: Role = Role.STUDENT
    via_service_key: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


SERVICE_ACTOR = Actor(user_id=None, email="service", role=Role.ADMIN, via_service_key=True)


def is_webhook_path(path: str) -> bool:
    return any(path == p or path.startswith(p + "/") for p in WEBHOOK_PUBLIC_PREFIXES)


def is_admin_path(path: str) -> bool:
    return path == ADMIN_PREFIX or path.startswith(ADMIN_PREFIX + "/")


def extract_bearer_token(auth_header: str | None) -> str | None:
    """Return the token of an ``Authorization: Bearer <token>`` header."""
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def is_service_key(api_key: str | None, settings: Settings | None = None) -> bool:
    """Constant-time check of an X-API-Key value against the service role key."""
    expected = (settings or get_settings()).supabase_service_role_key
    if not api_key or not expected:
        return False
    return hmac.compare_digest(api_key.encode("utf-8"), expected.encode("utf-8"))


def verify_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    """Decode and validate a session access token.

    Raises:
        ValueError: signature, expiry, audience or subject invalid.
    """
    secret = (settings or get_settings()).supabase_jwt_secret
    if not secret:
        raise ValueError("JWT secret not configured")
    try:
        claims = jwt.decode(token, secret, algorithms=[_ALGORITHM], audience=_AUDIENCE)
    except JWTError as e:
        raise ValueError(str(e)) from e
    if not claims.get("sub"):
        raise ValueError("Token has no subject")
    return claims


def create_token(
    user_id: str,
    email: str = "",
    expires_in: int = 3600,
    settings: Settings | None = None,
) -> str:
    """Issue a token shaped like the identity provider's access tokens."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "aud": _AUDIENCE,
        "role": "authenticated",
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, (settings or get_settings()).supabase_jwt_secret, algorithm=_ALGORITHM)


def resolve_actor(claims: dict[str, Any], store: DataStore) -> Actor:
    """Build the actor for verified claims; role comes from the profile row."""
    user_id = str(claims["sub"])
    profile = store.get_profile(user_id)
    role = profile.role if profile is not None else Role.STUDENT
    return Actor(user_id=user_id, email=(claims.get("email") or "").lower(), role=role)


# ── FastAPI dependencies ─────────────────────────────────────────────────


def get_actor(request: Request) -> Actor | None:
    """Actor attached by AuthMiddleware (None for anonymous callers)."""
    return getattr(request.state, "actor", None)


def require_actor(request: Request) -> Actor:
    actor = get_actor(request)
    if actor is None:
        raise AuthenticationError("Authentication required")
    return actor
