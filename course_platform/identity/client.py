"""Identity provider client (Supabase GoTrue admin API over httpx).

Every admin call authenticates with the service role key; password sign-in
uses the public anon key. Non-2xx answers raise ``IdentityProviderError``
with the upstream status, transport failures raise it with no status.

Security contract:
- The service role key never leaves this module's request headers
- Emails are compared lowercase-normalized
- Passwords are sent, never logged
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from course_platform.config import Settings, get_settings
from course_platform.errors import IdentityProviderError
from course_platform.store.models import Account

logger = logging.getLogger(__name__)

_PAGE_SIZE = 1000
_TIMEOUT = 15.0


@runtime_checkable
class IdentityProvider(Protocol):
    """Operations the platform needs from the identity provider."""

    def find_user_by_email(self, email: str) -> Account | None: ...

    def list_users(self) -> list[Account]: ...

    def create_user(
        self,
        email: str,
        password: str,
        user_metadata: dict[str, Any] | None = None,
        email_confirm: bool = True,
    ) -> Account: ...

    def delete_user(self, user_id: str) -> None: ...

    def update_user(self, user_id: str, attributes: dict[str, Any]) -> Account: ...

    def generate_recovery_link(self, email: str, redirect_to: str) -> str: ...

    def sign_in_with_password(self, email: str, password: str) -> dict[str, Any]: ...


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _account(data: dict[str, Any]) -> Account:
    return Account(
        id=str(data["id"]),
        email=(data.get("email") or "").lower(),
        created_at=_parse_timestamp(data.get("created_at")),
        user_metadata=data.get("user_metadata") or {},
    )


def rewrite_redirect(action_link: str, redirect_to: str) -> str:
    """Replace the ``redirect_to`` query parameter of a verification link."""
    parts = urlsplit(action_link)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "redirect_to"]
    query.append(("redirect_to", redirect_to))
    return urlunsplit(parts._replace(query=urlencode(query)))


class SupabaseAuthClient:
    """GoTrue admin REST client."""

    def __init__(self, settings: Settings | None = None, http: httpx.Client | None = None):
        self._settings = settings or get_settings()
        base = self._settings.supabase_url.rstrip("/")
        self._http = http or httpx.Client(timeout=_TIMEOUT)
        self._auth_url = f"{base}/auth/v1"

    @property
    def _admin_headers(self) -> dict[str, str]:
        key = self._settings.supabase_service_role_key
        return {"apikey": key, "Authorization": f"Bearer {key}"}

    def _request(self, method: str, path: str, *, headers: dict[str, str] | None = None, **kwargs: Any) -> Any:
        try:
            resp = self._http.request(
                method, f"{self._auth_url}{path}", headers=headers or self._admin_headers, **kwargs
            )
        except httpx.HTTPError as e:
            raise IdentityProviderError("Identity provider unreachable", details=str(e)) from e

        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            message = body.get("msg") or body.get("message") or body.get("error_description") or resp.text
            raise IdentityProviderError(
                message or "Identity provider error",
                details=body.get("error_code") or body.get("error"),
                upstream_status=resp.status_code,
            )
        if not resp.content:
            return None
        return resp.json()

    # ── Users ────────────────────────────────────────────────────────────

    def list_users(self) -> list[Account]:
        accounts: list[Account] = []
        page = 1
        while True:
            data = self._request("GET", "/admin/users", params={"page": page, "per_page": _PAGE_SIZE})
            users = data.get("users", []) if isinstance(data, dict) else data or []
            accounts.extend(_account(u) for u in users)
            if len(users) < _PAGE_SIZE:
                return accounts
            page += 1

    def find_user_by_email(self, email: str) -> Account | None:
        wanted = email.strip().lower()
        for account in self.list_users():
            if account.email == wanted:
                return account
        return None

    def create_user(
        self,
        email: str,
        password: str,
        user_metadata: dict[str, Any] | None = None,
        email_confirm: bool = True,
    ) -> Account:
        data = self._request(
            "POST",
            "/admin/users",
            json={
                "email": email,
                "password": password,
                "email_confirm": email_confirm,
                "user_metadata": user_metadata or {},
            },
        )
        account = _account(data)
        logger.info("Identity created: %s", account.id)
        return account

    def delete_user(self, user_id: str) -> None:
        self._request("DELETE", f"/admin/users/{user_id}")
        logger.info("Identity deleted: %s", user_id)

    def update_user(self, user_id: str, attributes: dict[str, Any]) -> Account:
        return _account(self._request("PUT", f"/admin/users/{user_id}", json=attributes))

    # ── Links and sessions ───────────────────────────────────────────────

    def generate_recovery_link(self, email: str, redirect_to: str) -> str:
        data = self._request(
            "POST",
            "/admin/generate_link",
            json={"type": "recovery", "email": email, "redirect_to": redirect_to},
        )
        link = data.get("action_link") or data.get("properties", {}).get("action_link")
        if not link:
            raise IdentityProviderError("Recovery link missing from response")
        return rewrite_redirect(link, redirect_to)

    def sign_in_with_password(self, email: str, password: str) -> dict[str, Any]:
        anon = self._settings.supabase_anon_key
        return self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            headers={"apikey": anon, "Authorization": f"Bearer {anon}"},
            json={"email": email, "password": password},
        )
