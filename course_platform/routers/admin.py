"""Admin management API: courses, sections, users, enrollments, SKU mappings.

All routes require an admin actor (AuthMiddleware guards the prefix, the
router dependency re-checks through the capability function).
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from course_platform.errors import ConflictError, NotFoundError, ValidationError
from course_platform.identity import IdentityProvider, get_identity_provider
from course_platform.security.auth import get_actor
from course_platform.security.permissions import ADMIN_AREA, Verb, require
from course_platform.security.sanitization import (
    sanitize_email,
    sanitize_html,
    sanitize_text,
    validate_password_strength,
)
from course_platform.store import DataStore, get_store
from course_platform.store.models import Course, Role, Section, SkuMapping
from course_platform.webhooks.ingestion import AccountProvisioner, EnrollmentWriter

logger = logging.getLogger(__name__)

_MAX_TITLE_LENGTH = 200


def require_admin(request: Request) -> None:
    require(get_actor(request), Verb.ADMINISTER, ADMIN_AREA)


router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# ── Request bodies ───────────────────────────────────────────────────────


class CourseCreate(BaseModel):
    title: str
    description: str
    price: Decimal = Decimal("0")
    duration_hours: int = 0
    is_active: bool = False


class CourseUpdate(BaseModel):
    title: str
    description: str
    price: Decimal | None = None
    duration_hours: int | None = None
    is_active: bool | None = None


class SectionCreate(BaseModel):
    title: str
    content: str
    vimeo_url: str | None = None
    downloadable_materials: list[dict[str, Any]] = Field(default_factory=list)


class SectionUpdate(SectionCreate):
    downloadable_materials: list[dict[str, Any]] | None = None


class SectionPosition(BaseModel):
    id: uuid.UUID
    order_index: int = Field(ge=1)


class SectionReorder(BaseModel):
    sections: list[SectionPosition] = Field(min_length=1)


class UserCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    role: str = "student"
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    course_access: list[uuid.UUID] = Field(default_factory=list, alias="courseAccess")
    access_until: datetime | None = Field(default=None, alias="accessUntil")

    @field_validator("course_access", mode="before")
    @classmethod
    def _single_course(cls, v: object) -> object:
        if v in (None, ""):
            return []
        return [v] if isinstance(v, str) else v

    @field_validator("access_until")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class AdminPasswordReset(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    new_password: str = Field(alias="newPassword")


class SkuMappingCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: uuid.UUID
    woo_sku: str = Field(min_length=1)
    woo_product_id: int | None = None
    woo_product_name: str = ""
    price: Decimal | None = None
    is_active: bool = True


class SkuMappingUpdate(BaseModel):
    course_id: uuid.UUID | None = None
    woo_sku: str | None = Field(default=None, min_length=1)
    woo_product_id: int | None = None
    woo_product_name: str | None = None
    price: Decimal | None = None
    is_active: bool | None = None


# ── Helpers ──────────────────────────────────────────────────────────────


def _title(raw: str) -> str:
    title = sanitize_text(raw, max_length=_MAX_TITLE_LENGTH)
    if not title:
        raise ValidationError("Title is required")
    return title


def _course_or_404(store: DataStore, course_id: uuid.UUID) -> Course:
    course = store.get_course(str(course_id))
    if course is None:
        raise NotFoundError("Course not found")
    return course


def _mapping_dict(mapping: SkuMapping) -> dict[str, Any]:
    return {
        "id": mapping.id,
        "course_id": mapping.course_id,
        "woo_sku": mapping.sku,
        "woo_product_id": mapping.product_id,
        "woo_product_name": mapping.product_name,
        "price": str(mapping.price) if mapping.price is not None else None,
        "is_active": mapping.is_active,
        "created_at": mapping.created_at.isoformat(),
        "updated_at": mapping.updated_at.isoformat(),
    }


# ── Courses ──────────────────────────────────────────────────────────────


@router.get("/courses")
def list_all_courses(store: DataStore = Depends(get_store)):
    """Every course, drafts included."""
    return {"courses": [c.to_dict() for c in store.list_courses()]}


@router.post("/courses", status_code=201)
def create_course(body: CourseCreate, store: DataStore = Depends(get_store)):
    description = sanitize_html(body.description)
    if not description.strip():
        raise ValidationError("Description is required")
    course = store.create_course(
        Course(
            title=_title(body.title),
            description=description,
            price=body.price,
            duration_hours=body.duration_hours,
            is_active=body.is_active,
        )
    )
    logger.info("Course created: %s", course.id)
    return {"course": course.to_dict()}


@router.put("/courses/{course_id}")
def update_course(course_id: uuid.UUID, body: CourseUpdate, store: DataStore = Depends(get_store)):
    changes: dict[str, Any] = {"title": _title(body.title), "description": sanitize_html(body.description)}
    for key in ("price", "duration_hours", "is_active"):
        value = getattr(body, key)
        if value is not None:
            changes[key] = value
    course = store.update_course(str(course_id), changes)
    if course is None:
        raise NotFoundError("Course not found")
    return {"course": course.to_dict()}


@router.post("/courses/{course_id}/publish")
def publish_course(course_id: uuid.UUID, store: DataStore = Depends(get_store)):
    course = store.update_course(str(course_id), {"is_active": True})
    if course is None:
        raise NotFoundError("Course not found")
    logger.info("Course published: %s", course.id)
    return {"course": course.to_dict()}


@router.delete("/courses/{course_id}")
def delete_course(course_id: uuid.UUID, store: DataStore = Depends(get_store)):
    """Removes the course with its sections and enrollments."""
    course = _course_or_404(store, course_id)
    sections = store.delete_sections_for_course(course.id)
    enrollments = store.delete_enrollments_for_course(course.id)
    store.delete_course(course.id)
    logger.info("Course deleted: %s (sections=%d enrollments=%d)", course.id, sections, enrollments)
    return {"success": True, "deleted_sections": sections, "deleted_enrollments": enrollments}


# ── Sections ─────────────────────────────────────────────────────────────


@router.post("/courses/{course_id}/sections", status_code=201)
def create_section(course_id: uuid.UUID, body: SectionCreate, store: DataStore = Depends(get_store)):
    course = _course_or_404(store, course_id)
    section = store.create_section(
        Section(
            course_id=course.id,
            title=_title(body.title),
            content=sanitize_html(body.content),
            vimeo_url=(body.vimeo_url or "").strip() or None,
            downloadable_materials=body.downloadable_materials,
        )
    )
    return {"section": section.to_dict()}


@router.put("/sections/{section_id}")
def update_section(section_id: uuid.UUID, body: SectionUpdate, store: DataStore = Depends(get_store)):
    changes: dict[str, Any] = {
        "title": _title(body.title),
        "content": sanitize_html(body.content),
        "vimeo_url": (body.vimeo_url or "").strip() or None,
    }
    if body.downloadable_materials is not None:
        changes["downloadable_materials"] = body.downloadable_materials
    section = store.update_section(str(section_id), changes)
    if section is None:
        raise NotFoundError("Section not found")
    return {"section": section.to_dict()}


@router.post("/courses/{course_id}/sections/reorder")
def reorder_sections(course_id: uuid.UUID, body: SectionReorder, store: DataStore = Depends(get_store)):
    course = _course_or_404(store, course_id)
    order = [(str(s.id), s.order_index) for s in body.sections]
    updated = store.reorder_sections(course.id, order)
    return {"success": True, "updated": updated}


# ── Users ────────────────────────────────────────────────────────────────


@router.get("/users")
def list_users(
    store: DataStore = Depends(get_store),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Identity-provider users merged with their profiles."""
    profiles = {p.user_id: p for p in store.list_profiles()}
    users = []
    for account in identity.list_users():
        profile = profiles.get(account.id)
        users.append(
            {
                "id": account.id,
                "email": account.email,
                "created_at": account.created_at.isoformat() if account.created_at else None,
                "role": profile.role.value if profile else Role.STUDENT.value,
                "display_name": profile.display_name if profile else "",
            }
        )
    return {"users": users}


@router.post("/users", status_code=201)
def create_user(
    body: UserCreate,
    store: DataStore = Depends(get_store),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    email = sanitize_email(body.email)
    if email is None:
        raise ValidationError("Invalid email address")
    problems = validate_password_strength(body.password)
    if problems:
        raise ValidationError("Password is too weak", details=problems)
    role = Role.ADMIN if body.role == Role.ADMIN.value else Role.STUDENT

    if identity.find_user_by_email(email) is not None:
        raise ConflictError("A user with this email already exists")

    course_ids = [str(cid) for cid in body.course_access]
    for cid in course_ids:
        if store.get_course(cid) is None:
            raise ValidationError("Unknown course in courseAccess", details={"course_id": cid})

    provisioned = AccountProvisioner(store, identity).provision(
        email,
        sanitize_text(body.first_name),
        sanitize_text(body.last_name),
        password=body.password,
        role=role,
        metadata={"source": "admin"},
        reuse_existing=False,
    )

    writer = EnrollmentWriter(store)
    for cid in course_ids:
        writer.grant(provisioned.id, cid, access_until=body.access_until)

    logger.info("Admin created user %s (role=%s, courses=%d)", provisioned.id, role.value, len(course_ids))
    return {
        "user": {"id": provisioned.id, "email": provisioned.email, "role": role.value},
        "enrolled_courses": course_ids,
    }


@router.delete("/users/{user_id}")
def delete_user(
    user_id: uuid.UUID,
    store: DataStore = Depends(get_store),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Deletes the identity; profile and enrollment cleanup is best-effort."""
    uid = str(user_id)
    identity.delete_user(uid)
    try:
        store.delete_profile(uid)
        store.delete_enrollments_for_user(uid)
    except Exception:
        logger.exception("Cleanup after deleting user %s failed", uid)
    return {"success": True}


@router.post("/users/reset-password")
def admin_reset_password(
    body: AdminPasswordReset,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    email = sanitize_email(body.email)
    if email is None:
        raise ValidationError("Invalid email address")
    problems = validate_password_strength(body.new_password)
    if problems:
        raise ValidationError("Password is too weak", details=problems)
    account = identity.find_user_by_email(email)
    if account is None:
        raise NotFoundError("User not found")
    identity.update_user(account.id, {"password": body.new_password})
    logger.info("Admin reset password for %s", account.id)
    return {"success": True}


# ── Enrollments ──────────────────────────────────────────────────────────


@router.post("/courses/{course_id}/enroll-students")
def enroll_all_students(course_id: uuid.UUID, store: DataStore = Depends(get_store)):
    """Grant the course to every student who does not have it yet."""
    course = _course_or_404(store, course_id)
    writer = EnrollmentWriter(store)
    enrolled = 0
    for profile in store.list_profiles():
        if profile.role != Role.STUDENT:
            continue
        if store.get_enrollment(profile.user_id, course.id) is not None:
            continue
        writer.grant(profile.user_id, course.id)
        enrolled += 1
    logger.info("Enrolled %d students into %s", enrolled, course.id)
    return {"success": True, "enrolled": enrolled}


# ── SKU mappings ─────────────────────────────────────────────────────────


@router.get("/sku-mappings")
def list_sku_mappings(store: DataStore = Depends(get_store)):
    return {"mappings": [_mapping_dict(m) for m in store.list_mappings()]}


@router.post("/sku-mappings", status_code=201)
def create_sku_mapping(body: SkuMappingCreate, store: DataStore = Depends(get_store)):
    course = _course_or_404(store, body.course_id)
    mapping = store.create_mapping(
        SkuMapping(
            sku=body.woo_sku.strip(),
            course_id=course.id,
            product_id=body.woo_product_id,
            product_name=sanitize_text(body.woo_product_name) or course.title,
            price=body.price,
            is_active=body.is_active,
        )
    )
    logger.info("SKU mapping created: %s -> %s", mapping.sku, mapping.course_id)
    return {"mapping": _mapping_dict(mapping)}


@router.put("/sku-mappings/{mapping_id}")
def update_sku_mapping(mapping_id: uuid.UUID, body: SkuMappingUpdate, store: DataStore = Depends(get_store)):
    fields = body.model_dump(exclude_unset=True)
    changes: dict[str, Any] = {}
    if fields.get("course_id") is not None:
        changes["course_id"] = _course_or_404(store, fields["course_id"]).id
    if fields.get("woo_sku") is not None:
        changes["sku"] = fields["woo_sku"].strip()
    if "woo_product_id" in fields:
        changes["product_id"] = fields["woo_product_id"]
    if fields.get("woo_product_name") is not None:
        changes["product_name"] = sanitize_text(fields["woo_product_name"])
    if "price" in fields:
        changes["price"] = fields["price"]
    if fields.get("is_active") is not None:
        changes["is_active"] = fields["is_active"]

    mapping = store.update_mapping(str(mapping_id), changes)
    if mapping is None:
        raise NotFoundError("SKU mapping not found")
    return {"mapping": _mapping_dict(mapping)}


@router.delete("/sku-mappings/{mapping_id}")
def delete_sku_mapping(mapping_id: uuid.UUID, store: DataStore = Depends(get_store)):
    if not store.delete_mapping(str(mapping_id)):
        raise NotFoundError("SKU mapping not found")
    return {"success": True}
