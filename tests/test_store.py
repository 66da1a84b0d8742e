"""Data store contract (in-memory backend) and Postgres error translation."""

from __future__ import annotations

import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import psycopg
import pytest

from course_platform.errors import ConflictError, PersistenceError
from course_platform.store import MemoryStore, get_store, set_store
from course_platform.store.models import (
    Comment,
    Course,
    Enrollment,
    EnrollmentStatus,
    Order,
    Section,
    SkuMapping,
    UserProfile,
    utcnow,
)
from course_platform.store.postgres import PostgresStore


@pytest.fixture
def mem():
    return MemoryStore()


class TestOrders:
    def test_insert_if_absent(self, mem):
        first = mem.insert_order(Order(external_id=1001, status="completed", total=Decimal("49.00")))
        again = mem.insert_order(Order(external_id=1001, status="completed"))

        assert first is not None
        assert again is None
        assert mem.get_order_by_external_id(1001).id == first.id

    def test_concurrent_duplicate_insert_has_one_winner(self, mem):
        """Simultaneous deliveries of one order: exactly one insert succeeds."""
        barrier = threading.Barrier(8)
        results = []

        def deliver():
            barrier.wait()
            results.append(mem.insert_order(Order(external_id=2002, status="completed")))

        threads = [threading.Thread(target=deliver) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if r is not None]
        assert len(results) == 8
        assert len(winners) == 1
        assert mem.get_order_by_external_id(2002).id == winners[0].id

    def test_returned_copies_are_detached(self, mem):
        order = mem.insert_order(Order(external_id=1, status="completed"))
        order.status = "tampered"
        assert mem.get_order_by_external_id(1).status == "completed"


class TestMappings:
    def test_duplicate_sku_conflict(self, mem):
        mem.create_mapping(SkuMapping(sku="A", course_id="c1"))
        with pytest.raises(ConflictError):
            mem.create_mapping(SkuMapping(sku="A", course_id="c2"))

    def test_rename_onto_existing_sku_conflict(self, mem):
        mem.create_mapping(SkuMapping(sku="A", course_id="c1"))
        other = mem.create_mapping(SkuMapping(sku="B", course_id="c1"))
        with pytest.raises(ConflictError):
            mem.update_mapping(other.id, {"sku": "A"})

    def test_active_lookup(self, mem):
        mapping = mem.create_mapping(SkuMapping(sku="A", course_id="c1"))
        mem.update_mapping(mapping.id, {"is_active": False})
        assert mem.get_active_mapping("A") is None


class TestEnrollments:
    def test_upsert_keeps_one_row(self, mem):
        mem.upsert_enrollment(Enrollment(user_id="u", course_id="c", order_id="o1"))
        mem.upsert_enrollment(Enrollment(user_id="u", course_id="c", status=EnrollmentStatus.ACTIVE))

        rows = mem.list_enrollments(user_id="u")
        assert len(rows) == 1
        assert rows[0].order_id == "o1"

    def test_upsert_overwrites_given_expiry(self, mem):
        until = utcnow() + timedelta(days=10)
        mem.upsert_enrollment(Enrollment(user_id="u", course_id="c"))
        mem.upsert_enrollment(Enrollment(user_id="u", course_id="c", access_until=until))
        assert mem.get_enrollment("u", "c").access_until == until

    def test_delete_by_course(self, mem):
        mem.upsert_enrollment(Enrollment(user_id="u1", course_id="c"))
        mem.upsert_enrollment(Enrollment(user_id="u2", course_id="c"))
        mem.upsert_enrollment(Enrollment(user_id="u1", course_id="other"))
        assert mem.delete_enrollments_for_course("c") == 2
        assert len(mem.list_enrollments(user_id="u1")) == 1

    def test_delete_by_user(self, mem):
        mem.upsert_enrollment(Enrollment(user_id="u1", course_id="c"))
        mem.upsert_enrollment(Enrollment(user_id="u1", course_id="other"))
        mem.upsert_enrollment(Enrollment(user_id="u2", course_id="c"))
        assert mem.delete_enrollments_for_user("u1") == 2
        assert [e.user_id for e in mem.list_enrollments(course_id="c")] == ["u2"]


class TestProfilesCoursesSections:
    def test_profile_conflict(self, mem):
        mem.create_profile(UserProfile(user_id="u"))
        with pytest.raises(ConflictError):
            mem.create_profile(UserProfile(user_id="u"))

    def test_active_only_listing(self, mem):
        mem.create_course(Course(title="Live", is_active=True))
        mem.create_course(Course(title="Draft"))
        assert [c.title for c in mem.list_courses(active_only=True)] == ["Live"]
        assert len(mem.list_courses()) == 2

    def test_update_touches_timestamp(self, mem):
        course = mem.create_course(Course(title="Old"))
        updated = mem.update_course(course.id, {"title": "New", "id": "hijack"})
        assert updated.id == course.id
        assert updated.updated_at >= course.updated_at

    def test_section_order_is_per_course(self, mem):
        a1 = mem.create_section(Section(course_id="a", title="1"))
        a2 = mem.create_section(Section(course_id="a", title="2"))
        b1 = mem.create_section(Section(course_id="b", title="1"))
        assert (a1.order_index, a2.order_index, b1.order_index) == (1, 2, 1)


class TestComments:
    def test_new_comment_not_edited(self):
        assert Comment(course_id="c", section_id="s", user_id="u", content="x").is_edited is False

    def test_update_marks_edited(self, mem):
        comment = mem.create_comment(
            Comment(course_id="c", section_id="s", user_id="u", content="x", created_at=utcnow() - timedelta(minutes=5))
        )
        assert mem.update_comment(comment.id, "y").is_edited is True

    def test_delete_cascades_to_replies(self, mem):
        parent = mem.create_comment(Comment(course_id="c", section_id="s", user_id="u", content="p"))
        mem.create_comment(Comment(course_id="c", section_id="s", user_id="u", content="r", parent_comment_id=parent.id))
        assert mem.delete_comment(parent.id) is True
        assert mem.list_comments("c", "s") == []

    def test_same_timestamp_newest_insert_first(self, mem):
        now = utcnow()
        for text in ("a", "b", "c"):
            mem.create_comment(Comment(course_id="c", section_id="s", user_id="u", content=text, created_at=now))
        assert [c.content for c in mem.list_comments("c", "s")] == ["c", "b", "a"]


class TestStoreSelection:
    def test_memory_store_without_database_url(self):
        set_store(None)
        try:
            assert isinstance(get_store(), MemoryStore)
        finally:
            set_store(None)

    def test_postgres_with_database_url(self, monkeypatch):
        from course_platform.config import get_settings

        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/courses")
        get_settings.cache_clear()
        set_store(None)
        try:
            with patch.object(PostgresStore, "init_tables") as init:
                assert isinstance(get_store(), PostgresStore)
            init.assert_called_once()
        finally:
            set_store(None)


class TestPostgresErrors:
    """psycopg failures are translated into platform errors."""

    @pytest.fixture
    def conn(self):
        with patch("course_platform.store.postgres.psycopg.connect") as connect:
            yield connect.return_value.__enter__.return_value

    def test_unique_violation_is_conflict(self, conn):
        conn.execute.side_effect = psycopg.errors.UniqueViolation("duplicate key")
        with pytest.raises(ConflictError):
            PostgresStore("postgresql://test").create_profile(UserProfile(user_id="u"))

    def test_other_errors_are_persistence_errors(self, conn):
        conn.execute.side_effect = psycopg.OperationalError("connection refused")
        with pytest.raises(PersistenceError):
            PostgresStore("postgresql://test").get_course("c")

    def test_ping_false_when_unreachable(self, conn):
        conn.execute.side_effect = psycopg.OperationalError("connection refused")
        assert PostgresStore("postgresql://test").ping() is False

    def test_order_conflict_returns_none(self, conn):
        conn.execute.return_value.fetchone.return_value = None
        assert PostgresStore("postgresql://test").insert_order(Order(external_id=1, status="completed")) is None

    def test_delete_reports_rowcount(self, conn):
        conn.execute.return_value = MagicMock(rowcount=0)
        assert PostgresStore("postgresql://test").delete_mapping("missing") is False
