"""In-process data store.

Suitable for tests and single-instance development. A single lock makes
insert-if-absent and upsert atomic within the process; nothing is shared
across processes or survives a restart.
"""

from __future__ import annotations

import copy
import threading
from typing import Any

from course_platform.errors import ConflictError
from course_platform.store.base import DataStore
from course_platform.store.models import (
    Comment,
    Course,
    Enrollment,
    Order,
    OrderItem,
    Section,
    SkuMapping,
    UserProfile,
    utcnow,
)


def _apply(record: Any, changes: dict[str, Any]) -> None:
    for key, value in changes.items():
        if key in record.__dataclass_fields__ and key != "id":
            setattr(record, key, value)
    if "updated_at" in record.__dataclass_fields__:
        record.updated_at = utcnow()


class MemoryStore(DataStore):
    """Dict-backed store with the same contract as the Postgres backend."""

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: dict[int, Order] = {}
        self._order_items: list[OrderItem] = []
        self._mappings: dict[str, SkuMapping] = {}
        self._profiles: dict[str, UserProfile] = {}
        self._enrollments: dict[tuple[str, str], Enrollment] = {}
        self._courses: dict[str, Course] = {}
        self._sections: dict[str, Section] = {}
        self._comments: list[Comment] = []

    def ping(self) -> bool:
        return True

    # ── Orders ───────────────────────────────────────────────────────────

    def insert_order(self, order: Order) -> Order | None:
        with self._lock:
            if order.external_id in self._orders:
                return None
            self._orders[order.external_id] = copy.deepcopy(order)
            return copy.deepcopy(order)

    def get_order_by_external_id(self, external_id: int) -> Order | None:
        with self._lock:
            return copy.deepcopy(self._orders.get(external_id))

    def insert_order_item(self, item: OrderItem) -> OrderItem:
        with self._lock:
            self._order_items.append(copy.deepcopy(item))
            return copy.deepcopy(item)

    def list_order_items(self, order_id: str) -> list[OrderItem]:
        with self._lock:
            return [copy.deepcopy(i) for i in self._order_items if i.order_id == order_id]

    # ── SKU mappings ─────────────────────────────────────────────────────

    def get_active_mapping(self, sku: str) -> SkuMapping | None:
        with self._lock:
            for mapping in self._mappings.values():
                if mapping.sku == sku and mapping.is_active:
                    return copy.deepcopy(mapping)
        return None

    def list_mappings(self) -> list[SkuMapping]:
        with self._lock:
            rows = sorted(self._mappings.values(), key=lambda m: m.created_at, reverse=True)
            return copy.deepcopy(rows)

    def get_mapping(self, mapping_id: str) -> SkuMapping | None:
        with self._lock:
            return copy.deepcopy(self._mappings.get(mapping_id))

    def create_mapping(self, mapping: SkuMapping) -> SkuMapping:
        with self._lock:
            if any(m.sku == mapping.sku for m in self._mappings.values()):
                raise ConflictError("SKU already mapped", details={"sku": mapping.sku})
            self._mappings[mapping.id] = copy.deepcopy(mapping)
            return copy.deepcopy(mapping)

    def update_mapping(self, mapping_id: str, changes: dict[str, Any]) -> SkuMapping | None:
        with self._lock:
            mapping = self._mappings.get(mapping_id)
            if mapping is None:
                return None
            new_sku = changes.get("sku")
            if new_sku and any(
                m.sku == new_sku and m.id != mapping_id for m in self._mappings.values()
            ):
                raise ConflictError("SKU already mapped", details={"sku": new_sku})
            _apply(mapping, changes)
            return copy.deepcopy(mapping)

    def delete_mapping(self, mapping_id: str) -> bool:
        with self._lock:
            return self._mappings.pop(mapping_id, None) is not None

    # ── Profiles ─────────────────────────────────────────────────────────

    def create_profile(self, profile: UserProfile) -> UserProfile:
        with self._lock:
            if profile.user_id in self._profiles:
                raise ConflictError("Profile already exists", details={"user_id": profile.user_id})
            self._profiles[profile.user_id] = copy.deepcopy(profile)
            return copy.deepcopy(profile)

    def get_profile(self, user_id: str) -> UserProfile | None:
        with self._lock:
            return copy.deepcopy(self._profiles.get(user_id))

    def list_profiles(self) -> list[UserProfile]:
        with self._lock:
            return copy.deepcopy(list(self._profiles.values()))

    def delete_profile(self, user_id: str) -> bool:
        with self._lock:
            return self._profiles.pop(user_id, None) is not None

    # ── Enrollments ──────────────────────────────────────────────────────

    def upsert_enrollment(self, enrollment: Enrollment) -> Enrollment:
        key = (enrollment.user_id, enrollment.course_id)
        with self._lock:
            existing = self._enrollments.get(key)
            if existing is None:
                self._enrollments[key] = copy.deepcopy(enrollment)
                return copy.deepcopy(enrollment)
            existing.status = enrollment.status
            existing.granted_at = enrollment.granted_at
            if enrollment.order_id is not None:
                existing.order_id = enrollment.order_id
            if enrollment.access_until is not None:
                existing.access_until = enrollment.access_until
            return copy.deepcopy(existing)

    def get_enrollment(self, user_id: str, course_id: str) -> Enrollment | None:
        with self._lock:
            return copy.deepcopy(self._enrollments.get((user_id, course_id)))

    def _matching_enrollments(self, user_id: str | None, course_id: str | None) -> list[tuple[str, str]]:
        return [
            key
            for key in self._enrollments
            if (user_id is None or key[0] == user_id) and (course_id is None or key[1] == course_id)
        ]

    def list_enrollments(
        self, *, user_id: str | None = None, course_id: str | None = None
    ) -> list[Enrollment]:
        with self._lock:
            keys = self._matching_enrollments(user_id, course_id)
            return [copy.deepcopy(self._enrollments[k]) for k in keys]

    def delete_enrollments_for_course(self, course_id: str) -> int:
        return self._delete_enrollments(None, course_id)

    def delete_enrollments_for_user(self, user_id: str) -> int:
        return self._delete_enrollments(user_id, None)

    def _delete_enrollments(self, user_id: str | None, course_id: str | None) -> int:
        with self._lock:
            keys = self._matching_enrollments(user_id, course_id)
            for key in keys:
                del self._enrollments[key]
            return len(keys)

    # ── Courses ──────────────────────────────────────────────────────────

    def create_course(self, course: Course) -> Course:
        with self._lock:
            self._courses[course.id] = copy.deepcopy(course)
            return copy.deepcopy(course)

    def get_course(self, course_id: str) -> Course | None:
        with self._lock:
            return copy.deepcopy(self._courses.get(course_id))

    def list_courses(self, *, active_only: bool = False) -> list[Course]:
        with self._lock:
            rows = [c for c in self._courses.values() if c.is_active or not active_only]
            return copy.deepcopy(sorted(rows, key=lambda c: c.created_at, reverse=True))

    def update_course(self, course_id: str, changes: dict[str, Any]) -> Course | None:
        with self._lock:
            course = self._courses.get(course_id)
            if course is None:
                return None
            _apply(course, changes)
            return copy.deepcopy(course)

    def delete_course(self, course_id: str) -> bool:
        with self._lock:
            return self._courses.pop(course_id, None) is not None

    # ── Sections ─────────────────────────────────────────────────────────

    def create_section(self, section: Section) -> Section:
        with self._lock:
            indexes = [s.order_index for s in self._sections.values() if s.course_id == section.course_id]
            section = copy.deepcopy(section)
            section.order_index = max(indexes, default=0) + 1
            self._sections[section.id] = section
            return copy.deepcopy(section)

    def get_section(self, section_id: str) -> Section | None:
        with self._lock:
            return copy.deepcopy(self._sections.get(section_id))

    def list_sections(self, course_id: str) -> list[Section]:
        with self._lock:
            rows = [s for s in self._sections.values() if s.course_id == course_id]
            return copy.deepcopy(sorted(rows, key=lambda s: s.order_index))

    def update_section(self, section_id: str, changes: dict[str, Any]) -> Section | None:
        with self._lock:
            section = self._sections.get(section_id)
            if section is None:
                return None
            _apply(section, changes)
            return copy.deepcopy(section)

    def reorder_sections(self, course_id: str, order: list[tuple[str, int]]) -> int:
        updated = 0
        with self._lock:
            for section_id, index in order:
                section = self._sections.get(section_id)
                if section is None or section.course_id != course_id:
                    continue
                section.order_index = index
                section.updated_at = utcnow()
                updated += 1
        return updated

    def delete_sections_for_course(self, course_id: str) -> int:
        with self._lock:
            doomed = [sid for sid, s in self._sections.items() if s.course_id == course_id]
            for sid in doomed:
                del self._sections[sid]
            return len(doomed)

    # ── Comments ─────────────────────────────────────────────────────────

    def list_comments(self, course_id: str, section_id: str) -> list[Comment]:
        with self._lock:
            rows = [
                c
                for c in reversed(self._comments)
                if c.course_id == course_id and c.section_id == section_id
            ]
            # stable sort over newest-inserted-first keeps ties newest first
            return copy.deepcopy(sorted(rows, key=lambda c: c.created_at, reverse=True))

    def get_comment(self, comment_id: str) -> Comment | None:
        with self._lock:
            for comment in self._comments:
                if comment.id == comment_id:
                    return copy.deepcopy(comment)
        return None

    def create_comment(self, comment: Comment) -> Comment:
        with self._lock:
            self._comments.append(copy.deepcopy(comment))
            return copy.deepcopy(comment)

    def update_comment(self, comment_id: str, content: str) -> Comment | None:
        with self._lock:
            for comment in self._comments:
                if comment.id == comment_id:
                    comment.content = content
                    comment.updated_at = utcnow()
                    return copy.deepcopy(comment)
        return None

    def delete_comment(self, comment_id: str) -> bool:
        with self._lock:
            before = len(self._comments)
            self._comments = [
                c for c in self._comments if c.id != comment_id and c.parent_comment_id != comment_id
            ]
            return len(self._comments) < before
