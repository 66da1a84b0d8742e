"""Data store interface.

Two implementations share these semantics:

- ``PostgresStore``: the production backend (psycopg, uniqueness enforced
  by table constraints).
- ``MemoryStore``: dict-backed, lock-guarded; single process only.

Contract points the ingestion path relies on:

- ``insert_order`` is insert-if-absent keyed on ``external_id``. It returns
  ``None`` when the order already exists; that is the only duplicate check.
- ``upsert_enrollment`` never creates a second row for a (user, course)
  pair. ``order_id`` and ``access_until`` are only overwritten when given.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from course_platform.store.models import (
    Comment,
    Course,
    Enrollment,
    Order,
    OrderItem,
    Section,
    SkuMapping,
    UserProfile,
)


class DataStore(ABC):
    # ── Health ───────────────────────────────────────────────────────────

    @abstractmethod
    def ping(self) -> bool: ...

    # ── Orders ───────────────────────────────────────────────────────────

    @abstractmethod
    def insert_order(self, order: Order) -> Order | None:
        """Store ``order`` unless its external id exists. None on conflict."""

    @abstractmethod
    def get_order_by_external_id(self, external_id: int) -> Order | None: ...

    @abstractmethod
    def insert_order_item(self, item: OrderItem) -> OrderItem: ...

    @abstractmethod
    def list_order_items(self, order_id: str) -> list[OrderItem]: ...

    # ── SKU mappings ─────────────────────────────────────────────────────

    @abstractmethod
    def get_active_mapping(self, sku: str) -> SkuMapping | None: ...

    @abstractmethod
    def list_mappings(self) -> list[SkuMapping]: ...

    @abstractmethod
    def get_mapping(self, mapping_id: str) -> SkuMapping | None: ...

    @abstractmethod
    def create_mapping(self, mapping: SkuMapping) -> SkuMapping:
        """Raises ConflictError when the SKU is already mapped."""

    @abstractmethod
    def update_mapping(self, mapping_id: str, changes: dict[str, Any]) -> SkuMapping | None: ...

    @abstractmethod
    def delete_mapping(self, mapping_id: str) -> bool: ...

    # ── Profiles ─────────────────────────────────────────────────────────

    @abstractmethod
    def create_profile(self, profile: UserProfile) -> UserProfile: ...

    @abstractmethod
    def get_profile(self, user_id: str) -> UserProfile | None: ...

    @abstractmethod
    def list_profiles(self) -> list[UserProfile]: ...

    @abstractmethod
    def delete_profile(self, user_id: str) -> bool: ...

    # ── Enrollments ──────────────────────────────────────────────────────

    @abstractmethod
    def upsert_enrollment(self, enrollment: Enrollment) -> Enrollment: ...

    @abstractmethod
    def get_enrollment(self, user_id: str, course_id: str) -> Enrollment | None: ...

    @abstractmethod
    def list_enrollments(
        self, *, user_id: str | None = None, course_id: str | None = None
    ) -> list[Enrollment]: ...

    @abstractmethod
    def delete_enrollments_for_course(self, course_id: str) -> int: ...

    @abstractmethod
    def delete_enrollments_for_user(self, user_id: str) -> int: ...

    # ── Courses ──────────────────────────────────────────────────────────

    @abstractmethod
    def create_course(self, course: Course) -> Course: ...

    @abstractmethod
    def get_course(self, course_id: str) -> Course | None: ...

    @abstractmethod
    def list_courses(self, *, active_only: bool = False) -> list[Course]:
        """Newest first."""

    @abstractmethod
    def update_course(self, course_id: str, changes: dict[str, Any]) -> Course | None: ...

    @abstractmethod
    def delete_course(self, course_id: str) -> bool: ...

    # ── Sections ─────────────────────────────────────────────────────────

    @abstractmethod
    def create_section(self, section: Section) -> Section:
        """Appends: ``order_index`` becomes max + 1 within the course (1 if first)."""

    @abstractmethod
    def get_section(self, section_id: str) -> Section | None: ...

    @abstractmethod
    def list_sections(self, course_id: str) -> list[Section]:
        """Ordered by ``order_index``."""

    @abstractmethod
    def update_section(self, section_id: str, changes: dict[str, Any]) -> Section | None: ...

    @abstractmethod
    def reorder_sections(self, course_id: str, order: list[tuple[str, int]]) -> int:
        """Apply (section_id, order_index) pairs within one course. Returns rows updated."""

    @abstractmethod
    def delete_sections_for_course(self, course_id: str) -> int: ...

    # ── Comments ─────────────────────────────────────────────────────────

    @abstractmethod
    def list_comments(self, course_id: str, section_id: str) -> list[Comment]:
        """All comments of a section, newest first."""

    @abstractmethod
    def get_comment(self, comment_id: str) -> Comment | None: ...

    @abstractmethod
    def create_comment(self, comment: Comment) -> Comment: ...

    @abstractmethod
    def update_comment(self, comment_id: str, content: str) -> Comment | None: ...

    @abstractmethod
    def delete_comment(self, comment_id: str) -> bool:
        """Deletes the comment and its replies."""
