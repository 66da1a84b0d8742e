"""WooCommerce order ingestion: turns a completed order into enrollments.

Flow per order:
    received -> duplicate-checked -> order-persisted
        -> per line: mapped -> account-resolved -> enrolled -> notified
        -> completed

Failure policy:
- Order not "completed": no-op, nothing written
- Order row already exists (unique external id): no-op duplicate
- Order row insert fails: PersistenceError, the whole request fails
- Anything failing inside one line (no mapping, account, item row,
  enrollment) is logged and the next line is processed
- Email failures are logged by the dispatcher and never change the outcome
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from course_platform.channels.dispatcher import NotificationDispatcher
from course_platform.errors import (
    IdentityProviderError,
    PersistenceError,
    PlatformError,
    ValidationError,
)
from course_platform.identity.client import IdentityProvider
from course_platform.retry import retry_with_backoff
from course_platform.security.sanitization import sanitize_email
from course_platform.store.base import DataStore
from course_platform.store.models import (
    Enrollment,
    EnrollmentStatus,
    Order,
    OrderItem,
    ProvisionedAccount,
    Role,
    SkuMapping,
    UserProfile,
    utcnow,
)
from course_platform.webhooks.models import LineItem, WooCommerceOrder

logger = logging.getLogger(__name__)

_PASSWORD_ALPHABET = string.ascii_letters + string.digits
PASSWORD_LENGTH = 12


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Random alphanumeric password for accounts created from orders."""
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


# ---------------------------------------------------------------------------
# SKU mapping
# ---------------------------------------------------------------------------


class SkuMapper:
    """Resolves a purchased SKU to the course it unlocks."""

    def __init__(self, store: DataStore):
        self._store = store

    def lookup(self, sku: str) -> SkuMapping | None:
        """Active mapping for ``sku``, or None (inactive, unknown or blank)."""
        sku = (sku or "").strip()
        if not sku:
            return None
        return self._store.get_active_mapping(sku)


# ---------------------------------------------------------------------------
# Account provisioning
# ---------------------------------------------------------------------------


class AccountProvisioner:
    """Find-or-create an identity plus its role profile.

    Identity and profile are created as one unit: when the profile insert
    fails, the identity is deleted again (retried with backoff). If even
    that fails the identity is logged as orphaned.
    """

    def __init__(self, store: DataStore, identity: IdentityProvider):
        self._store = store
        self._identity = identity

    def provision(
        self,
        email: str,
        first_name: str = "",
        last_name: str = "",
        *,
        password: str | None = None,
        role: Role = Role.STUDENT,
        metadata: dict[str, Any] | None = None,
        reuse_existing: bool = True,
    ) -> ProvisionedAccount:
        normalized = sanitize_email(email)
        if normalized is None:
            raise ValidationError("Invalid email address")

        if reuse_existing:
            existing = self._identity.find_user_by_email(normalized)
            if existing is not None:
                logger.info("Reusing existing account %s", existing.id)
                return ProvisionedAccount(account=existing, created=False)

        password = password or generate_password()
        display_name = f"{first_name} {last_name}".strip()
        user_metadata = {
            "first_name": first_name,
            "last_name": last_name,
            "full_name": display_name,
            **(metadata or {}),
        }
        account = self._identity.create_user(
            normalized, password, user_metadata=user_metadata, email_confirm=True
        )

        try:
            self._store.create_profile(
                UserProfile(user_id=account.id, role=role, display_name=display_name or normalized)
            )
        except Exception as e:
            logger.error("Profile creation failed for %s, rolling back identity", account.id)
            self._compensate(account.id)
            raise PersistenceError("Failed to create user profile", details=str(e)) from e

        logger.info("Account created: %s (role=%s)", account.id, role.value)
        return ProvisionedAccount(account=account, created=True, password=password)

    @retry_with_backoff(max_retries=3, base_delay=0.5, max_delay=5.0)
    def _delete_identity(self, user_id: str) -> None:
        try:
            self._identity.delete_user(user_id)
        except IdentityProviderError as e:
            if e.upstream_status != 404:
                raise

    def _compensate(self, user_id: str) -> None:
        try:
            self._delete_identity(user_id)
        except Exception:
            logger.exception("ORPHANED_IDENTITY user=%s: compensating delete failed", user_id)


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------


class EnrollmentWriter:
    """Grants course access. Idempotent per (user, course)."""

    def __init__(self, store: DataStore):
        self._store = store

    def grant(
        self,
        user_id: str,
        course_id: str,
        order_id: str | None = None,
        access_until: datetime | None = None,
    ) -> Enrollment:
        return self._store.upsert_enrollment(
            Enrollment(
                user_id=user_id,
                course_id=course_id,
                status=EnrollmentStatus.ACTIVE,
                access_until=access_until,
                order_id=order_id,
                granted_at=utcnow(),
            )
        )


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


@dataclass
class LineOutcome:
    sku: str
    status: str  # enrolled | unmapped | mapping_failed | account_failed | item_failed | enrollment_failed
    course_id: str | None = None
    user_id: str | None = None
    error: str = ""


@dataclass
class IngestionResult:
    outcome: str  # skipped | duplicate | processed
    external_id: int
    order: Order | None = None
    lines: list[LineOutcome] = field(default_factory=list)

    @property
    def enrolled(self) -> int:
        return sum(1 for line in self.lines if line.status == "enrolled")


@dataclass
class _Buyer:
    """Per-order buyer state shared across line items."""

    account: ProvisionedAccount | None = None
    credentials_sent: bool = False


class OrderIngestor:
    """Sequences mapping, provisioning, enrollment and notification per order."""

    def __init__(
        self,
        store: DataStore,
        identity: IdentityProvider,
        dispatcher: NotificationDispatcher,
    ):
        self._store = store
        self._mapper = SkuMapper(store)
        self._provisioner = AccountProvisioner(store, identity)
        self._enrollments = EnrollmentWriter(store)
        self._dispatcher = dispatcher

    def ingest(self, order: WooCommerceOrder) -> IngestionResult:
        if not order.is_completed:
            logger.info("Order %s not completed (status=%s), skipping", order.id, order.status)
            return IngestionResult(outcome="skipped", external_id=order.id)

        record = Order(
            external_id=order.id,
            order_key=order.order_key,
            status=order.status,
            currency=order.currency,
            total=order.total,
            customer_email=(order.billing.email or "").strip().lower(),
            customer_first_name=order.billing.first_name,
            customer_last_name=order.billing.last_name,
            payment_method=order.payment_method_title,
            order_date=order.date_created,
        )
        try:
            stored = self._store.insert_order(record)
        except Exception as e:
            logger.exception("Failed to insert order %s", order.id)
            details = e.details if isinstance(e, PlatformError) and e.details else str(e)
            raise PersistenceError("Failed to process order", details=details) from e

        if stored is None:
            logger.info("Order %s already processed", order.id)
            return IngestionResult(outcome="duplicate", external_id=order.id)

        result = IngestionResult(outcome="processed", external_id=order.id, order=stored)
        buyer = _Buyer()
        for item in order.line_items:
            outcome = self._process_line(order, stored, item, buyer)
            result.lines.append(outcome)

        logger.info(
            "Order %s processed: %d/%d lines enrolled",
            order.id,
            result.enrolled,
            len(order.line_items),
        )
        return result

    def _process_line(
        self, order: WooCommerceOrder, stored: Order, item: LineItem, buyer: _Buyer
    ) -> LineOutcome:
        try:
            mapping = self._mapper.lookup(item.sku)
        except Exception as e:
            logger.exception("Mapping lookup failed: order=%s sku=%s", order.id, item.sku)
            return LineOutcome(sku=item.sku, status="mapping_failed", error=str(e))
        if mapping is None:
            logger.warning("No active course mapping: order=%s sku=%r, skipping line", order.id, item.sku)
            return LineOutcome(sku=item.sku, status="unmapped")

        if buyer.account is None:
            try:
                buyer.account = self._provisioner.provision(
                    order.billing.email,
                    order.billing.first_name,
                    order.billing.last_name,
                    metadata={"source": "woocommerce", "woo_customer_id": order.customer_id},
                )
            except Exception as e:
                logger.exception("Account provisioning failed: order=%s sku=%s", order.id, item.sku)
                return LineOutcome(sku=item.sku, status="account_failed", course_id=mapping.course_id, error=str(e))
        account = buyer.account

        try:
            self._store.insert_order_item(
                OrderItem(
                    order_id=stored.id,
                    product_id=item.product_id,
                    sku=item.sku,
                    product_name=item.name,
                    quantity=item.quantity,
                    price=item.total,
                    course_id=mapping.course_id,
                    user_id=account.id,
                    enrollment_created_at=utcnow(),
                )
            )
        except Exception as e:
            logger.exception("Order item insert failed: order=%s sku=%s", order.id, item.sku)
            return LineOutcome(
                sku=item.sku, status="item_failed", course_id=mapping.course_id, user_id=account.id, error=str(e)
            )

        try:
            self._enrollments.grant(account.id, mapping.course_id, order_id=stored.id)
        except Exception as e:
            logger.exception("Enrollment failed: order=%s sku=%s", order.id, item.sku)
            return LineOutcome(
                sku=item.sku,
                status="enrollment_failed",
                course_id=mapping.course_id,
                user_id=account.id,
                error=str(e),
            )

        if account.created and not buyer.credentials_sent:
            buyer.credentials_sent = True
            self._dispatcher.send_credentials(account.email, account.password or "", order.billing.first_name)
        self._dispatcher.send_welcome(
            account.email, mapping.product_name or item.name or "your course", order.billing.first_name
        )

        return LineOutcome(sku=item.sku, status="enrolled", course_id=mapping.course_id, user_id=account.id)
