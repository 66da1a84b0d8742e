"""Shared fixtures for the course platform test suite.

- Environment: secrets and URLs set per test, settings cache cleared
- Collaborators: in-memory store, fake identity provider, recording mailer
- HTTP: ``app``/``client`` built by ``create_app`` with a fresh rate limiter
- Helpers: ``make_user`` (identity + profile + bearer headers),
  ``make_course``, ``map_sku``, ``order_payload``, ``post_webhook``
"""

from __future__ import annotations

import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from course_platform.channels import set_email_sender
from course_platform.channels.protocol import EmailMessage, SendResult
from course_platform.config import get_settings
from course_platform.errors import IdentityProviderError
from course_platform.identity import set_identity_provider
from course_platform.security.auth import create_token
from course_platform.security.ratelimit import RateLimitService
from course_platform.serve import create_app
from course_platform.store import MemoryStore, set_store
from course_platform.store.models import Account, Course, Role, SkuMapping, UserProfile, new_id, utcnow
from course_platform.webhooks.verification import compute_signature

WEBHOOK_SECRET = "whsec-test-0123456789"
JWT_SECRET = "jwt-test-secret-0123456789abcdef0123456789"
SERVICE_ROLE_KEY = "service-role-test-key"
APP_URL = "https://courses.example.test"


@pytest.fixture(autouse=True)
def _environment(monkeypatch):
    monkeypatch.setenv("WOOCOMMERCE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("SUPABASE_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", SERVICE_ROLE_KEY)
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-test-key")
    monkeypatch.setenv("SUPABASE_URL", "https://auth.example.test")
    monkeypatch.setenv("RESEND_API_KEY", "re_test_key")
    monkeypatch.setenv("APP_URL", APP_URL)
    monkeypatch.setenv("DATABASE_URL", "")
    monkeypatch.setenv("TRUSTED_PROXIES", "")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ── Fakes ────────────────────────────────────────────────────────────────


class FakeIdentityProvider:
    """In-memory identity provider with failure injection."""

    def __init__(self):
        self.accounts: dict[str, Account] = {}
        self.passwords: dict[str, str] = {}
        self.created: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.recovery_links: list[tuple[str, str]] = []
        self.fail_create: Exception | None = None
        self.fail_delete: list[Exception] = []  # raised in order, one per call
        self.fail_lookup: Exception | None = None

    def add(self, email: str, password: str = "Secret123") -> Account:
        account = Account(id=new_id(), email=email.lower(), created_at=utcnow())
        self.accounts[account.id] = account
        self.passwords[account.id] = password
        return account

    def find_user_by_email(self, email: str) -> Account | None:
        if self.fail_lookup is not None:
            raise self.fail_lookup
        wanted = email.strip().lower()
        return next((a for a in self.accounts.values() if a.email == wanted), None)

    def list_users(self) -> list[Account]:
        return list(self.accounts.values())

    def create_user(self, email, password, user_metadata=None, email_confirm=True) -> Account:
        if self.fail_create is not None:
            raise self.fail_create
        account = self.add(email, password)
        account.user_metadata = dict(user_metadata or {})
        self.created.append(
            {"email": email, "password": password, "user_metadata": account.user_metadata, "email_confirm": email_confirm}
        )
        return account

    def delete_user(self, user_id: str) -> None:
        if self.fail_delete:
            raise self.fail_delete.pop(0)
        if user_id not in self.accounts:
            raise IdentityProviderError("User not found", upstream_status=404)
        del self.accounts[user_id]
        self.deleted.append(user_id)

    def update_user(self, user_id: str, attributes: dict[str, Any]) -> Account:
        if user_id not in self.accounts:
            raise IdentityProviderError("User not found", upstream_status=404)
        if "password" in attributes:
            self.passwords[user_id] = attributes["password"]
        self.updates.append((user_id, attributes))
        return self.accounts[user_id]

    def generate_recovery_link(self, email: str, redirect_to: str) -> str:
        link = f"https://auth.example.test/auth/v1/verify?token=tok&type=recovery&redirect_to={redirect_to}"
        self.recovery_links.append((email, link))
        return link

    def sign_in_with_password(self, email: str, password: str) -> dict[str, Any]:
        account = self.find_user_by_email(email)
        if account is None or self.passwords.get(account.id) != password:
            raise IdentityProviderError("Invalid login credentials", upstream_status=400)
        return {
            "access_token": create_token(account.id, account.email),
            "refresh_token": "refresh-token",
            "expires_in": 3600,
            "token_type": "bearer",
            "user": {"id": account.id, "email": account.email},
        }


class RecordingEmailSender:
    """EmailSender that keeps every message instead of delivering it."""

    def __init__(self):
        self.sent: list[EmailMessage] = []
        self.fail = False

    @property
    def is_configured(self) -> bool:
        return True

    def send(self, message: EmailMessage) -> SendResult:
        if self.fail:
            return SendResult(success=False, error="provider down")
        self.sent.append(message)
        return SendResult(success=True, message_id=f"msg-{len(self.sent)}")

    def categories(self) -> list[str]:
        return [m.tags.get("category", "") for m in self.sent]


# ── Collaborator fixtures ────────────────────────────────────────────────


@pytest.fixture
def store():
    s = MemoryStore()
    set_store(s)
    yield s
    set_store(None)


@pytest.fixture
def identity():
    provider = FakeIdentityProvider()
    set_identity_provider(provider)
    yield provider
    set_identity_provider(None)


@pytest.fixture
def mailer():
    sender = RecordingEmailSender()
    set_email_sender(sender)
    yield sender
    set_email_sender(None)


@pytest.fixture
def rate_limiter():
    return RateLimitService("memory://", "100/minute", "20/minute")


@pytest.fixture
def app(store, identity, mailer, rate_limiter):
    return create_app(rate_limiter=rate_limiter)


@pytest.fixture
def client(app):
    """Unauthenticated TestClient."""
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


# ── Builders ─────────────────────────────────────────────────────────────


@pytest.fixture
def make_user(store, identity):
    """Create identity + profile; returns (account, auth headers)."""

    def _make(email: str = "student@example.com", role: Role = Role.STUDENT, display_name: str = "Sam Student"):
        account = identity.add(email)
        store.create_profile(UserProfile(user_id=account.id, role=role, display_name=display_name))
        headers = {"Authorization": f"Bearer {create_token(account.id, account.email)}"}
        return account, headers

    return _make


@pytest.fixture
def admin_headers(make_user):
    _, headers = make_user("admin@example.com", Role.ADMIN, "Ada Admin")
    return headers


@pytest.fixture
def student(make_user):
    return make_user("student@example.com", Role.STUDENT, "Sam Student")


@pytest.fixture
def student_headers(student):
    return student[1]


@pytest.fixture
def service_headers():
    return {"X-API-Key": SERVICE_ROLE_KEY}


@pytest.fixture
def make_course(store):
    def _make(title: str = "Python Basics", is_active: bool = True, **kwargs) -> Course:
        return store.create_course(Course(title=title, description=f"{title} description", is_active=is_active, **kwargs))

    return _make


@pytest.fixture
def map_sku(store):
    def _map(sku: str, course: Course, product_name: str = "", is_active: bool = True) -> SkuMapping:
        return store.create_mapping(
            SkuMapping(sku=sku, course_id=course.id, product_name=product_name or course.title, is_active=is_active)
        )

    return _map


@pytest.fixture
def order_payload():
    """Factory for a WooCommerce order webhook body (as a dict)."""

    def _make(
        order_id: int = 1001,
        status: str = "completed",
        email: str = "Buyer@Example.com",
        skus: tuple[str, ...] = ("PY-101",),
        **overrides: Any,
    ) -> dict[str, Any]:
        payload = {
            "id": order_id,
            "status": status,
            "order_key": f"wc_order_{order_id}",
            "currency": "EUR",
            "total": "49.00",
            "customer_id": 7,
            "payment_method_title": "Credit card",
            "date_created": "2024-05-01T10:00:00",
            "billing": {"email": email, "first_name": "Bea", "last_name": "Buyer"},
            "line_items": [
                {"id": i + 1, "product_id": 500 + i, "name": f"Product {sku}", "sku": sku, "quantity": 1, "total": "49.00"}
                for i, sku in enumerate(skus)
            ],
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def post_webhook(client):
    """POST a body to the webhook endpoint, signed with the test secret unless told otherwise."""

    def _post(payload: dict[str, Any] | bytes, signature: str | None = "auto"):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if signature == "auto":
            signature = compute_signature(body, WEBHOOK_SECRET)
        if signature is not None:
            headers["X-WC-Webhook-Signature"] = signature
        return client.post("/api/woocommerce/webhook", content=body, headers=headers)

    return _post
