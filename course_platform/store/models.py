"""Persistent records: orders, mappings, profiles, enrollments, courses, comments.

Plain dataclasses shared by both store backends. Ids are strings (UUIDs)
except the WooCommerce order id, which arrives as an integer and is kept as
the order's ``external_id``.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Role(str, Enum):
    ADMIN = "admin"
    STUDENT = "student"


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


class _Record:
    """Mixin: JSON-friendly dict conversion for dataclass records."""

    def to_dict(self) -> dict[str, Any]:
        return {k: _serialize(v) for k, v in asdict(self).items()}  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, d: dict[str, Any]):
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@dataclass
class Order(_Record):
    """An ingested WooCommerce order. Immutable once stored."""

    external_id: int
    status: str
    currency: str = ""
    total: Decimal = Decimal("0")
    customer_email: str = ""
    customer_first_name: str = ""
    customer_last_name: str = ""
    order_key: str = ""
    payment_method: str = ""
    order_date: datetime | None = None
    processed_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


@dataclass
class OrderItem(_Record):
    """One persisted order line with the course and user it resolved to."""

    order_id: str
    product_id: int | None
    sku: str
    product_name: str = ""
    quantity: int = 1
    price: Decimal = Decimal("0")
    course_id: str | None = None
    user_id: str | None = None
    enrollment_created_at: datetime | None = None
    id: str = field(default_factory=new_id)


@dataclass
class SkuMapping(_Record):
    sku: str
    course_id: str
    product_id: int | None = None
    product_name: str = ""
    price: Decimal | None = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass
class Account(_Record):
    """Identity-provider user. ``email`` is always lowercase."""

    id: str
    email: str
    created_at: datetime | None = None
    user_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProvisionedAccount:
    """Result of find-or-create. ``password`` is set only when ``created``."""

    account: Account
    created: bool = False
    password: str | None = field(default=None, repr=False)

    @property
    def id(self) -> str:
        return self.account.id

    @property
    def email(self) -> str:
        return self.account.email


@dataclass
class UserProfile(_Record):
    user_id: str
    role: Role = Role.STUDENT
    display_name: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass
class Enrollment(_Record):
    """Access grant for one (user, course) pair."""

    user_id: str
    course_id: str
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    access_until: datetime | None = None
    order_id: str | None = None
    granted_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def is_active(self, now: datetime | None = None) -> bool:
        if self.status != EnrollmentStatus.ACTIVE:
            return False
        if self.access_until is None:
            return True
        return (now or utcnow()) < self.access_until


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------


@dataclass
class Course(_Record):
    title: str
    description: str = ""
    price: Decimal = Decimal("0")
    duration_hours: int = 0
    is_active: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


@dataclass
class Section(_Record):
    course_id: str
    title: str
    content: str = ""
    vimeo_url: str | None = None
    downloadable_materials: list[dict[str, Any]] = field(default_factory=list)
    order_index: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


@dataclass
class Comment(_Record):
    course_id: str
    section_id: str
    user_id: str
    content: str
    parent_comment_id: str | None = None
    is_anonymous: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = None  # type: ignore[assignment]
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_edited(self) -> bool:
        return self.updated_at > self.created_at
