"""Course catalogue and the signed-in user's enrollments."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from course_platform.errors import NotFoundError
from course_platform.security.auth import Actor, get_actor, require_actor
from course_platform.security.permissions import CourseContent, Verb, can, require
from course_platform.store import DataStore, get_store

router = APIRouter(prefix="/api", tags=["courses"])


@router.get("/courses")
def list_courses(store: DataStore = Depends(get_store)):
    """Published courses, newest first."""
    return {"courses": [c.to_dict() for c in store.list_courses(active_only=True)]}


@router.get("/courses/{course_id}")
def get_course(
    course_id: uuid.UUID,
    store: DataStore = Depends(get_store),
    actor: Actor | None = Depends(get_actor),
):
    """Course details; sections only for enrolled users and admins."""
    course = store.get_course(str(course_id))
    if course is None or not can(actor, Verb.READ, course):
        raise NotFoundError("Course not found")

    enrollment = None
    if actor is not None and actor.user_id is not None:
        enrollment = store.get_enrollment(actor.user_id, course.id)
    content = CourseContent(course=course, enrollment=enrollment)

    body = {"course": course.to_dict(), "has_access": can(actor, Verb.READ, content)}
    if body["has_access"]:
        body["sections"] = [s.to_dict() for s in store.list_sections(course.id)]
    return body


@router.get("/my-courses")
def my_courses(
    store: DataStore = Depends(get_store),
    actor: Actor = Depends(require_actor),
):
    """Courses the caller currently has active access to."""
    courses = []
    if actor.user_id is None:
        return {"courses": courses}
    for enrollment in store.list_enrollments(user_id=actor.user_id):
        require(actor, Verb.READ, enrollment)
        if not enrollment.is_active():
            continue
        course = store.get_course(enrollment.course_id)
        if course is None:
            continue
        courses.append(
            {
                **course.to_dict(),
                "enrollment": {
                    "status": enrollment.status.value,
                    "access_until": enrollment.access_until.isoformat() if enrollment.access_until else None,
                    "granted_at": enrollment.granted_at.isoformat(),
                },
            }
        )
    return {"courses": courses}
