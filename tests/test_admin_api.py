"""Admin API: courses, sections, users, enrollments and SKU mappings."""

from __future__ import annotations

import uuid
from unittest.mock import patch

import pytest

from course_platform.errors import IdentityProviderError
from course_platform.store.models import Enrollment, Role, Section, UserProfile


@pytest.fixture
def admin(client, admin_headers):
    """Client calls pre-authenticated as an admin."""

    class _Admin:
        def get(self, url, **kw):
            return client.get(url, headers=admin_headers, **kw)

        def post(self, url, **kw):
            return client.post(url, headers=admin_headers, **kw)

        def put(self, url, **kw):
            return client.put(url, headers=admin_headers, **kw)

        def delete(self, url, **kw):
            return client.delete(url, headers=admin_headers, **kw)

    return _Admin()


class TestCourses:
    def test_create_draft(self, admin, store):
        resp = admin.post("/api/admin/courses", json={"title": "Django", "description": "<p>Web</p>", "price": "29.90"})

        assert resp.status_code == 201
        course = resp.json()["course"]
        assert course["is_active"] is False
        assert course["price"] == "29.90"
        assert store.get_course(course["id"]).description == "<p>Web</p>"

    @pytest.mark.parametrize(
        "body",
        [{"description": "d"}, {"title": "t"}, {"title": "<>", "description": "d"}, {"title": "t", "description": "  "}],
    )
    def test_required_fields(self, admin, body):
        assert admin.post("/api/admin/courses", json=body).status_code == 400

    def test_description_scripts_stripped(self, admin):
        resp = admin.post(
            "/api/admin/courses", json={"title": "T", "description": "<p>ok</p><script>x()</script>"}
        )
        assert resp.json()["course"]["description"] == "<p>ok</p>"

    def test_update_and_publish(self, admin, make_course):
        course = make_course("Old", is_active=False)

        resp = admin.put(f"/api/admin/courses/{course.id}", json={"title": "New", "description": "Fresh"})
        assert resp.json()["course"]["title"] == "New"
        assert resp.json()["course"]["is_active"] is False

        resp = admin.post(f"/api/admin/courses/{course.id}/publish")
        assert resp.json()["course"]["is_active"] is True

    def test_update_missing_404(self, admin):
        resp = admin.put(f"/api/admin/courses/{uuid.uuid4()}", json={"title": "x", "description": "y"})
        assert resp.status_code == 404

    def test_list_includes_drafts(self, admin, make_course):
        make_course("Draft", is_active=False)
        assert [c["title"] for c in admin.get("/api/admin/courses").json()["courses"]] == ["Draft"]

    def test_delete_cascades(self, admin, store, make_course):
        course = make_course()
        store.create_section(Section(course_id=course.id, title="S1"))
        store.upsert_enrollment(Enrollment(user_id="u1", course_id=course.id))

        resp = admin.delete(f"/api/admin/courses/{course.id}")

        assert resp.json() == {"success": True, "deleted_sections": 1, "deleted_enrollments": 1}
        assert store.get_course(course.id) is None
        assert store.list_sections(course.id) == []
        assert store.list_enrollments(course_id=course.id) == []


class TestSections:
    def test_sections_appended_in_order(self, admin, make_course):
        course = make_course()
        first = admin.post(f"/api/admin/courses/{course.id}/sections", json={"title": "Intro", "content": "<p>a</p>"})
        second = admin.post(
            f"/api/admin/courses/{course.id}/sections",
            json={"title": "Next", "content": "b", "vimeo_url": " https://vimeo.com/1 ", "downloadable_materials": [{"name": "slides.pdf"}]},
        )

        assert first.status_code == 201
        assert first.json()["section"]["order_index"] == 1
        assert second.json()["section"]["order_index"] == 2
        assert second.json()["section"]["vimeo_url"] == "https://vimeo.com/1"
        assert second.json()["section"]["downloadable_materials"] == [{"name": "slides.pdf"}]

    def test_section_for_unknown_course_404(self, admin):
        resp = admin.post(f"/api/admin/courses/{uuid.uuid4()}/sections", json={"title": "x", "content": "y"})
        assert resp.status_code == 404

    def test_update_section(self, admin, store, make_course):
        section = store.create_section(Section(course_id=make_course().id, title="Old", content="c"))
        resp = admin.put(f"/api/admin/sections/{section.id}", json={"title": "Renamed", "content": "<b onclick=\"x\">c</b>"})
        assert resp.json()["section"]["title"] == "Renamed"
        assert "onclick" not in resp.json()["section"]["content"]

    def test_reorder(self, admin, store, make_course):
        course = make_course()
        a = store.create_section(Section(course_id=course.id, title="A"))
        b = store.create_section(Section(course_id=course.id, title="B"))
        foreign = store.create_section(Section(course_id=make_course("Other").id, title="X"))

        resp = admin.post(
            f"/api/admin/courses/{course.id}/sections/reorder",
            json={"sections": [{"id": a.id, "order_index": 2}, {"id": b.id, "order_index": 1}, {"id": foreign.id, "order_index": 9}]},
        )

        assert resp.json() == {"success": True, "updated": 2}
        assert [s.title for s in store.list_sections(course.id)] == ["B", "A"]
        assert store.get_section(foreign.id).order_index == 1


class TestUsers:
    def test_list_merges_profiles(self, admin, identity):
        identity.add("noprofile@example.com")

        users = {u["email"]: u for u in admin.get("/api/admin/users").json()["users"]}

        assert users["admin@example.com"]["role"] == "admin"
        assert users["noprofile@example.com"]["role"] == "student"

    def test_create_user_with_course_access(self, admin, store, identity, make_course):
        course = make_course()

        resp = admin.post(
            "/api/admin/users",
            json={
                "email": "New@Example.com",
                "password": "Welcome123",
                "role": "student",
                "courseAccess": course.id,
                "accessUntil": "2099-01-01T00:00:00",
            },
        )

        assert resp.status_code == 201
        user = resp.json()["user"]
        assert user["email"] == "new@example.com"
        assert identity.passwords[user["id"]] == "Welcome123"
        enrollment = store.get_enrollment(user["id"], course.id)
        assert enrollment.access_until.year == 2099
        assert enrollment.is_active()

    def test_unknown_role_becomes_student(self, admin, store):
        resp = admin.post("/api/admin/users", json={"email": "x@example.com", "password": "Welcome123", "role": "root"})
        assert store.get_profile(resp.json()["user"]["id"]).role == Role.STUDENT

    def test_weak_password_rejected(self, admin, identity):
        resp = admin.post("/api/admin/users", json={"email": "x@example.com", "password": "weak"})
        assert resp.status_code == 400
        assert identity.created == []

    def test_existing_email_409(self, admin, identity):
        identity.add("taken@example.com")
        resp = admin.post("/api/admin/users", json={"email": "taken@example.com", "password": "Welcome123"})
        assert resp.status_code == 409

    def test_unknown_course_400(self, admin, identity):
        resp = admin.post(
            "/api/admin/users",
            json={"email": "x@example.com", "password": "Welcome123", "courseAccess": [str(uuid.uuid4())]},
        )
        assert resp.status_code == 400
        assert identity.created == []

    def test_profile_failure_rolls_back_identity(self, admin, store, identity):
        with patch.object(store, "create_profile", side_effect=RuntimeError("db down")):
            resp = admin.post("/api/admin/users", json={"email": "x@example.com", "password": "Welcome123"})

        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to create user profile"
        assert identity.find_user_by_email("x@example.com") is None

    def test_delete_user(self, admin, store, identity, make_user, make_course):
        account, _ = make_user("leaving@example.com")
        store.upsert_enrollment(Enrollment(user_id=account.id, course_id=make_course().id))

        resp = admin.delete(f"/api/admin/users/{account.id}")

        assert resp.json() == {"success": True}
        assert account.id in identity.deleted
        assert store.get_profile(account.id) is None
        assert store.list_enrollments(user_id=account.id) == []

    def test_delete_user_provider_error_surfaces(self, admin, identity):
        identity.fail_delete = [IdentityProviderError("boom", upstream_status=500)]
        resp = admin.delete(f"/api/admin/users/{uuid.uuid4()}")
        assert resp.status_code == 502

    def test_admin_reset_password(self, admin, identity):
        account = identity.add("u@example.com", "OldPass123")
        resp = admin.post("/api/admin/users/reset-password", json={"email": "u@example.com", "newPassword": "NewPass123"})
        assert resp.json() == {"success": True}
        assert identity.passwords[account.id] == "NewPass123"

    def test_admin_reset_unknown_user_404(self, admin):
        resp = admin.post("/api/admin/users/reset-password", json={"email": "ghost@example.com", "newPassword": "NewPass123"})
        assert resp.status_code == 404


class TestEnrollAllStudents:
    def test_enrolls_students_only_once(self, admin, store, make_course):
        course = make_course()
        store.create_profile(UserProfile(user_id="s1"))
        store.create_profile(UserProfile(user_id="s2"))
        store.create_profile(UserProfile(user_id="a1", role=Role.ADMIN))
        store.upsert_enrollment(Enrollment(user_id="s2", course_id=course.id))

        resp = admin.post(f"/api/admin/courses/{course.id}/enroll-students")

        assert resp.json() == {"success": True, "enrolled": 1}
        enrolled = {e.user_id for e in store.list_enrollments(course_id=course.id)}
        assert enrolled == {"s1", "s2"}

        assert admin.post(f"/api/admin/courses/{course.id}/enroll-students").json()["enrolled"] == 0


class TestSkuMappings:
    def test_crud(self, admin, make_course):
        course = make_course("Python Basics")

        created = admin.post("/api/admin/sku-mappings", json={"course_id": course.id, "woo_sku": "PY-101", "woo_product_id": 77})
        assert created.status_code == 201
        mapping = created.json()["mapping"]
        assert mapping["woo_product_name"] == "Python Basics"

        listed = admin.get("/api/admin/sku-mappings").json()["mappings"]
        assert [m["woo_sku"] for m in listed] == ["PY-101"]

        updated = admin.put(f"/api/admin/sku-mappings/{mapping['id']}", json={"is_active": False})
        assert updated.json()["mapping"]["is_active"] is False
        assert updated.json()["mapping"]["woo_product_id"] == 77

        assert admin.delete(f"/api/admin/sku-mappings/{mapping['id']}").json() == {"success": True}
        assert admin.delete(f"/api/admin/sku-mappings/{mapping['id']}").status_code == 404

    def test_duplicate_sku_409(self, admin, make_course):
        course = make_course()
        admin.post("/api/admin/sku-mappings", json={"course_id": course.id, "woo_sku": "PY-101"})
        resp = admin.post("/api/admin/sku-mappings", json={"course_id": course.id, "woo_sku": "PY-101"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "SKU already mapped"

    def test_required_fields(self, admin):
        assert admin.post("/api/admin/sku-mappings", json={"woo_sku": "X"}).status_code == 400
        assert admin.post("/api/admin/sku-mappings", json={"course_id": str(uuid.uuid4()), "woo_sku": ""}).status_code == 400

    def test_unknown_course_404(self, admin):
        resp = admin.post("/api/admin/sku-mappings", json={"course_id": str(uuid.uuid4()), "woo_sku": "X"})
        assert resp.status_code == 404

    def test_mapping_drives_ingestion(self, admin, make_course, post_webhook, order_payload, store, identity):
        course = make_course()
        admin.post("/api/admin/sku-mappings", json={"course_id": course.id, "woo_sku": "PY-101"})

        post_webhook(order_payload())

        account = identity.find_user_by_email("buyer@example.com")
        assert store.get_enrollment(account.id, course.id) is not None
