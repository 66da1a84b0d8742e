"""Postgres data store (psycopg 3).

Table layout follows the platform's existing schema (``woo_orders``,
``course_sku_mappings``, ``user_courses`` ...). Uniqueness that the order
ingestion path depends on lives in the schema:

- ``woo_orders.woo_order_id`` UNIQUE: the duplicate-delivery guard.
- ``user_courses (user_id, course_id)`` UNIQUE: enrollment upsert key.
- ``course_sku_mappings.woo_sku`` UNIQUE.

Every database failure is re-raised as ``PersistenceError``.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator

import psycopg
from psycopg.rows import dict_row

from course_platform.errors import ConflictError, PersistenceError
from course_platform.store.base import DataStore
from course_platform.store.models import (
    Comment,
    Course,
    Enrollment,
    EnrollmentStatus,
    Order,
    OrderItem,
    Role,
    Section,
    SkuMapping,
    UserProfile,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS courses (
    id UUID PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    price NUMERIC(10, 2) NOT NULL DEFAULT 0,
    duration_hours INTEGER NOT NULL DEFAULT 0,
    is_active BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS course_sections (
    id UUID PRIMARY KEY,
    course_id UUID NOT NULL REFERENCES courses (id),
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    vimeo_url TEXT,
    downloadable_materials JSONB NOT NULL DEFAULT '[]',
    order_index INTEGER NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS user_profiles (
    user_id UUID PRIMARY KEY,
    role TEXT NOT NULL DEFAULT 'student' CHECK (role IN ('admin', 'student')),
    display_name TEXT NOT NULL DEFAULT '',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS woo_orders (
    id UUID PRIMARY KEY,
    woo_order_id BIGINT NOT NULL UNIQUE,
    woo_order_key TEXT NOT NULL DEFAULT '',
    customer_email TEXT NOT NULL DEFAULT '',
    customer_first_name TEXT NOT NULL DEFAULT '',
    customer_last_name TEXT NOT NULL DEFAULT '',
    order_status TEXT NOT NULL,
    order_total NUMERIC(10, 2) NOT NULL DEFAULT 0,
    currency TEXT NOT NULL DEFAULT '',
    payment_method TEXT NOT NULL DEFAULT '',
    order_date TIMESTAMPTZ,
    processed_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS user_courses (
    id UUID PRIMARY KEY,
    user_id UUID NOT NULL,
    course_id UUID NOT NULL,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'expired', 'cancelled')),
    access_until TIMESTAMPTZ,
    woo_order_id UUID REFERENCES woo_orders (id),
    access_granted_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (user_id, course_id)
);

CREATE TABLE IF NOT EXISTS woo_order_items (
    id UUID PRIMARY KEY,
    woo_order_id UUID NOT NULL REFERENCES woo_orders (id),
    woo_product_id BIGINT,
    woo_sku TEXT NOT NULL DEFAULT '',
    product_name TEXT NOT NULL DEFAULT '',
    quantity INTEGER NOT NULL DEFAULT 1,
    price NUMERIC(10, 2) NOT NULL DEFAULT 0,
    course_id UUID,
    user_id UUID,
    enrollment_created_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS course_sku_mappings (
    id UUID PRIMARY KEY,
    course_id UUID NOT NULL,
    woo_sku TEXT NOT NULL UNIQUE,
    woo_product_id BIGINT,
    woo_product_name TEXT NOT NULL DEFAULT '',
    price NUMERIC(10, 2),
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS comments (
    id UUID PRIMARY KEY,
    course_id UUID NOT NULL,
    section_id UUID NOT NULL,
    user_id UUID NOT NULL,
    content TEXT NOT NULL,
    parent_comment_id UUID REFERENCES comments (id) ON DELETE CASCADE,
    is_anonymous BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_comments_section ON comments (course_id, section_id, created_at DESC);
"""

# Columns an admin may change through update_* calls, by table.
_COURSE_COLUMNS = {"title", "description", "price", "duration_hours", "is_active"}
_SECTION_COLUMNS = {"title", "content", "vimeo_url", "downloadable_materials", "order_index"}
_MAPPING_COLUMNS = {
    "course_id": "course_id",
    "sku": "woo_sku",
    "product_id": "woo_product_id",
    "product_name": "woo_product_name",
    "price": "price",
    "is_active": "is_active",
}


def _str(value: Any) -> str | None:
    return None if value is None else str(value)


# ── Row mappers ──────────────────────────────────────────────────────────


def _order(row: dict) -> Order:
    return Order(
        id=str(row["id"]),
        external_id=row["woo_order_id"],
        order_key=row["woo_order_key"],
        status=row["order_status"],
        currency=row["currency"],
        total=row["order_total"],
        customer_email=row["customer_email"],
        customer_first_name=row["customer_first_name"],
        customer_last_name=row["customer_last_name"],
        payment_method=row["payment_method"],
        order_date=row["order_date"],
        processed_at=row["processed_at"],
    )


def _order_item(row: dict) -> OrderItem:
    return OrderItem(
        id=str(row["id"]),
        order_id=str(row["woo_order_id"]),
        product_id=row["woo_product_id"],
        sku=row["woo_sku"],
        product_name=row["product_name"],
        quantity=row["quantity"],
        price=row["price"],
        course_id=_str(row["course_id"]),
        user_id=_str(row["user_id"]),
        enrollment_created_at=row["enrollment_created_at"],
    )


def _mapping(row: dict) -> SkuMapping:
    return SkuMapping(
        id=str(row["id"]),
        sku=row["woo_sku"],
        course_id=str(row["course_id"]),
        product_id=row["woo_product_id"],
        product_name=row["woo_product_name"],
        price=row["price"],
        is_active=row["is_active"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _profile(row: dict) -> UserProfile:
    return UserProfile(
        user_id=str(row["user_id"]),
        role=Role(row["role"]),
        display_name=row["display_name"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _enrollment(row: dict) -> Enrollment:
    return Enrollment(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        course_id=str(row["course_id"]),
        status=EnrollmentStatus(row["status"]),
        access_until=row["access_until"],
        order_id=_str(row["woo_order_id"]),
        granted_at=row["access_granted_at"],
    )


def _course(row: dict) -> Course:
    return Course(
        id=str(row["id"]),
        title=row["title"],
        description=row["description"],
        price=row["price"],
        duration_hours=row["duration_hours"],
        is_active=row["is_active"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _section(row: dict) -> Section:
    return Section(
        id=str(row["id"]),
        course_id=str(row["course_id"]),
        title=row["title"],
        content=row["content"],
        vimeo_url=row["vimeo_url"],
        downloadable_materials=row["downloadable_materials"] or [],
        order_index=row["order_index"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _comment(row: dict) -> Comment:
    return Comment(
        id=str(row["id"]),
        course_id=str(row["course_id"]),
        section_id=str(row["section_id"]),
        user_id=str(row["user_id"]),
        content=row["content"],
        parent_comment_id=_str(row["parent_comment_id"]),
        is_anonymous=row["is_anonymous"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresStore(DataStore):
    """Data store backed by Postgres via psycopg."""

    def __init__(self, dsn: str):
        self._dsn = dsn

    @contextmanager
    def _get_conn(self) -> Iterator[psycopg.Connection]:
        try:
            with psycopg.connect(self._dsn, autocommit=True, row_factory=dict_row) as conn:
                yield conn
        except psycopg.errors.UniqueViolation as e:
            raise ConflictError("Duplicate record", details=str(e)) from e
        except psycopg.Error as e:
            logger.exception("Database error")
            raise PersistenceError("Database error", details=str(e)) from e

    def init_tables(self) -> None:
        """Create tables if they don't exist."""
        with self._get_conn() as conn:
            conn.execute(SCHEMA)
        logger.info("Course platform tables initialized")

    def ping(self) -> bool:
        try:
            with self._get_conn() as conn:
                conn.execute("SELECT 1")
            return True
        except PersistenceError:
            return False

    def _update(self, table: str, key: str, key_value: str, columns: dict[str, Any]) -> dict | None:
        if not columns:
            with self._get_conn() as conn:
                return conn.execute(f"SELECT * FROM {table} WHERE {key} = %s", (key_value,)).fetchone()
        assignments = ", ".join(f"{col} = %s" for col in columns)
        touch = ", updated_at = now()" if table != "user_courses" else ""
        with self._get_conn() as conn:
            return conn.execute(
                f"UPDATE {table} SET {assignments}{touch} WHERE {key} = %s RETURNING *",
                (*columns.values(), key_value),
            ).fetchone()

    # ── Orders ───────────────────────────────────────────────────────────

    def insert_order(self, order: Order) -> Order | None:
        with self._get_conn() as conn:
            row = conn.execute(
                """INSERT INTO woo_orders
                       (id, woo_order_id, woo_order_key, customer_email, customer_first_name,
                        customer_last_name, order_status, order_total, currency,
                        payment_method, order_date, processed_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                   ON CONFLICT (woo_order_id) DO NOTHING
                   RETURNING *""",
                (
                    order.id,
                    order.external_id,
                    order.order_key,
                    order.customer_email,
                    order.customer_first_name,
                    order.customer_last_name,
                    order.status,
                    order.total,
                    order.currency,
                    order.payment_method,
                    order.order_date,
                    order.processed_at,
                ),
            ).fetchone()
        return _order(row) if row else None

    def get_order_by_external_id(self, external_id: int) -> Order | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM woo_orders WHERE woo_order_id = %s", (external_id,)
            ).fetchone()
        return _order(row) if row else None

    def insert_order_item(self, item: OrderItem) -> OrderItem:
        with self._get_conn() as conn:
            row = conn.execute(
                """INSERT INTO woo_order_items
                       (id, woo_order_id, woo_product_id, woo_sku, product_name, quantity,
                        price, course_id, user_id, enrollment_created_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                   RETURNING *""",
                (
                    item.id,
                    item.order_id,
                    item.product_id,
                    item.sku,
                    item.product_name,
                    item.quantity,
                    item.price,
                    item.course_id,
                    item.user_id,
                    item.enrollment_created_at,
                ),
            ).fetchone()
        return _order_item(row)

    def list_order_items(self, order_id: str) -> list[OrderItem]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM woo_order_items WHERE woo_order_id = %s", (order_id,)
            ).fetchall()
        return [_order_item(r) for r in rows]

    # ── SKU mappings ─────────────────────────────────────────────────────

    def get_active_mapping(self, sku: str) -> SkuMapping | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM course_sku_mappings WHERE woo_sku = %s AND is_active = TRUE",
                (sku,),
            ).fetchone()
        return _mapping(row) if row else None

    def list_mappings(self) -> list[SkuMapping]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM course_sku_mappings ORDER BY created_at DESC"
            ).fetchall()
        return [_mapping(r) for r in rows]

    def get_mapping(self, mapping_id: str) -> SkuMapping | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM course_sku_mappings WHERE id = %s", (mapping_id,)
            ).fetchone()
        return _mapping(row) if row else None

    def create_mapping(self, mapping: SkuMapping) -> SkuMapping:
        with self._get_conn() as conn:
            row = conn.execute(
                """INSERT INTO course_sku_mappings
                       (id, course_id, woo_sku, woo_product_id, woo_product_name, price, is_active)
                   VALUES (%s, %s, %s, %s, %s, %s, %s)
                   RETURNING *""",
                (
                    mapping.id,
                    mapping.course_id,
                    mapping.sku,
                    mapping.product_id,
                    mapping.product_name,
                    mapping.price,
                    mapping.is_active,
                ),
            ).fetchone()
        return _mapping(row)

    def update_mapping(self, mapping_id: str, changes: dict[str, Any]) -> SkuMapping | None:
        columns = {_MAPPING_COLUMNS[k]: v for k, v in changes.items() if k in _MAPPING_COLUMNS}
        row = self._update("course_sku_mappings", "id", mapping_id, columns)
        return _mapping(row) if row else None

    def delete_mapping(self, mapping_id: str) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM course_sku_mappings WHERE id = %s", (mapping_id,))
        return cur.rowcount > 0

    # ── Profiles ─────────────────────────────────────────────────────────

    def create_profile(self, profile: UserProfile) -> UserProfile:
        with self._get_conn() as conn:
            row = conn.execute(
                """INSERT INTO user_profiles (user_id, role, display_name)
                   VALUES (%s, %s, %s)
                   RETURNING *""",
                (profile.user_id, profile.role.value, profile.display_name),
            ).fetchone()
        return _profile(row)

    def get_profile(self, user_id: str) -> UserProfile | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM user_profiles WHERE user_id = %s", (user_id,)
            ).fetchone()
        return _profile(row) if row else None

    def list_profiles(self) -> list[UserProfile]:
        with self._get_conn() as conn:
            rows = conn.execute("SELECT * FROM user_profiles").fetchall()
        return [_profile(r) for r in rows]

    def delete_profile(self, user_id: str) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM user_profiles WHERE user_id = %s", (user_id,))
        return cur.rowcount > 0

    # ── Enrollments ──────────────────────────────────────────────────────

    def upsert_enrollment(self, enrollment: Enrollment) -> Enrollment:
        with self._get_conn() as conn:
            row = conn.execute(
                """INSERT INTO user_courses
                       (id, user_id, course_id, status, access_until, woo_order_id, access_granted_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s)
                   ON CONFLICT (user_id, course_id) DO UPDATE SET
                       status = EXCLUDED.status,
                       access_granted_at = EXCLUDED.access_granted_at,
                       access_until = COALESCE(EXCLUDED.access_until, user_courses.access_until),
                       woo_order_id = COALESCE(EXCLUDED.woo_order_id, user_courses.woo_order_id)
                   RETURNING *""",
                (
                    enrollment.id,
                    enrollment.user_id,
                    enrollment.course_id,
                    enrollment.status.value,
                    enrollment.access_until,
                    enrollment.order_id,
                    enrollment.granted_at,
                ),
            ).fetchone()
        return _enrollment(row)

    def get_enrollment(self, user_id: str, course_id: str) -> Enrollment | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM user_courses WHERE user_id = %s AND course_id = %s",
                (user_id, course_id),
            ).fetchone()
        return _enrollment(row) if row else None

    @staticmethod
    def _enrollment_filter(user_id: str | None, course_id: str | None) -> tuple[str, list[Any]]:
        clauses, params = [], []
        if user_id is not None:
            clauses.append("user_id = %s")
            params.append(user_id)
        if course_id is not None:
            clauses.append("course_id = %s")
            params.append(course_id)
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        return where, params

    def list_enrollments(
        self, *, user_id: str | None = None, course_id: str | None = None
    ) -> list[Enrollment]:
        where, params = self._enrollment_filter(user_id, course_id)
        with self._get_conn() as conn:
            rows = conn.execute(f"SELECT * FROM user_courses{where}", params).fetchall()
        return [_enrollment(r) for r in rows]

    def delete_enrollments_for_course(self, course_id: str) -> int:
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM user_courses WHERE course_id = %s", (course_id,))
        return cur.rowcount

    def delete_enrollments_for_user(self, user_id: str) -> int:
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM user_courses WHERE user_id = %s", (user_id,))
        return cur.rowcount

    # ── Courses ──────────────────────────────────────────────────────────

    def create_course(self, course: Course) -> Course:
        with self._get_conn() as conn:
            row = conn.execute(
                """INSERT INTO courses (id, title, description, price, duration_hours, is_active)
                   VALUES (%s, %s, %s, %s, %s, %s)
                   RETURNING *""",
                (
                    course.id,
                    course.title,
                    course.description,
                    course.price,
                    course.duration_hours,
                    course.is_active,
                ),
            ).fetchone()
        return _course(row)

    def get_course(self, course_id: str) -> Course | None:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM courses WHERE id = %s", (course_id,)).fetchone()
        return _course(row) if row else None

    def list_courses(self, *, active_only: bool = False) -> list[Course]:
        query = "SELECT * FROM courses"
        if active_only:
            query += " WHERE is_active = TRUE"
        with self._get_conn() as conn:
            rows = conn.execute(query + " ORDER BY created_at DESC").fetchall()
        return [_course(r) for r in rows]

    def update_course(self, course_id: str, changes: dict[str, Any]) -> Course | None:
        columns = {k: v for k, v in changes.items() if k in _COURSE_COLUMNS}
        row = self._update("courses", "id", course_id, columns)
        return _course(row) if row else None

    def delete_course(self, course_id: str) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM courses WHERE id = %s", (course_id,))
        return cur.rowcount > 0

    # ── Sections ─────────────────────────────────────────────────────────

    def create_section(self, section: Section) -> Section:
        with self._get_conn() as conn:
            row = conn.execute(
                """INSERT INTO course_sections
                       (id, course_id, title, content, vimeo_url, downloadable_materials, order_index)
                   SELECT %s, %s, %s, %s, %s, %s,
                          COALESCE(MAX(order_index), 0) + 1
                   FROM course_sections WHERE course_id = %s
                   RETURNING *""",
                (
                    section.id,
                    section.course_id,
                    section.title,
                    section.content,
                    section.vimeo_url,
                    json.dumps(section.downloadable_materials),
                    section.course_id,
                ),
            ).fetchone()
        return _section(row)

    def get_section(self, section_id: str) -> Section | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM course_sections WHERE id = %s", (section_id,)
            ).fetchone()
        return _section(row) if row else None

    def list_sections(self, course_id: str) -> list[Section]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM course_sections WHERE course_id = %s ORDER BY order_index",
                (course_id,),
            ).fetchall()
        return [_section(r) for r in rows]

    def update_section(self, section_id: str, changes: dict[str, Any]) -> Section | None:
        columns = {k: v for k, v in changes.items() if k in _SECTION_COLUMNS}
        if "downloadable_materials" in columns:
            columns["downloadable_materials"] = json.dumps(columns["downloadable_materials"])
        row = self._update("course_sections", "id", section_id, columns)
        return _section(row) if row else None

    def reorder_sections(self, course_id: str, order: list[tuple[str, int]]) -> int:
        updated = 0
        with self._get_conn() as conn:
            with conn.transaction():
                for section_id, index in order:
                    cur = conn.execute(
                        """UPDATE course_sections SET order_index = %s, updated_at = now()
                           WHERE id = %s AND course_id = %s""",
                        (index, section_id, course_id),
                    )
                    updated += cur.rowcount
        return updated

    def delete_sections_for_course(self, course_id: str) -> int:
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM course_sections WHERE course_id = %s", (course_id,))
        return cur.rowcount

    # ── Comments ─────────────────────────────────────────────────────────

    def list_comments(self, course_id: str, section_id: str) -> list[Comment]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM comments
                   WHERE course_id = %s AND section_id = %s
                   ORDER BY created_at DESC""",
                (course_id, section_id),
            ).fetchall()
        return [_comment(r) for r in rows]

    def get_comment(self, comment_id: str) -> Comment | None:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM comments WHERE id = %s", (comment_id,)).fetchone()
        return _comment(row) if row else None

    def create_comment(self, comment: Comment) -> Comment:
        with self._get_conn() as conn:
            row = conn.execute(
                """INSERT INTO comments
                       (id, course_id, section_id, user_id, content, parent_comment_id, is_anonymous)
                   VALUES (%s, %s, %s, %s, %s, %s, %s)
                   RETURNING *""",
                (
                    comment.id,
                    comment.course_id,
                    comment.section_id,
                    comment.user_id,
                    comment.content,
                    comment.parent_comment_id,
                    comment.is_anonymous,
                ),
            ).fetchone()
        return _comment(row)

    def update_comment(self, comment_id: str, content: str) -> Comment | None:
        row = self._update("comments", "id", comment_id, {"content": content})
        return _comment(row) if row else None

    def delete_comment(self, comment_id: str) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM comments WHERE id = %s", (comment_id,))
        return cur.rowcount > 0
