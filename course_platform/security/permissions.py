"""Capability checks: one function decides who may do what to which resource.

Verbs are a closed set. Rules:

- admins may do anything
- anyone may read published courses and comments
- signed-in users may create comments and update/delete their own
- course content (sections) is readable with an active enrollment
- a user may read their own profile and enrollments
- ``administer`` is admin-only
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from course_platform.errors import AuthenticationError, PermissionDenied
from course_platform.security.auth import Actor
from course_platform.store.models import Comment, Course, Enrollment, UserProfile


class Verb(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ADMINISTER = "administer"


# Resource standing for admin-only functionality as a whole
ADMIN_AREA = "admin"


@dataclass
class CourseContent:
    """A course's sections, guarded by the reader's enrollment (if any)."""

    course: Course
    enrollment: Enrollment | None = None


def _owns(actor: Actor, resource: Any) -> bool:
    owner = getattr(resource, "user_id", None)
    return actor.user_id is not None and owner == actor.user_id


def can(actor: Actor | None, verb: Verb, resource: Any) -> bool:
    """Return True if ``actor`` may apply ``verb`` to ``resource``."""
    if actor is not None and actor.is_admin:
        return True

    if isinstance(resource, Course):
        return verb == Verb.READ and resource.is_active

    if isinstance(resource, Comment):
        if verb == Verb.READ:
            return True
        if actor is None:
            return False
        if verb == Verb.CREATE:
            return True
        return verb in (Verb.UPDATE, Verb.DELETE) and _owns(actor, resource)

    if actor is None:
        return False

    if isinstance(resource, CourseContent):
        enrollment = resource.enrollment
        return (
            verb == Verb.READ
            and enrollment is not None
            and _owns(actor, enrollment)
            and enrollment.is_active()
        )

    if isinstance(resource, (UserProfile, Enrollment)):
        return verb == Verb.READ and _owns(actor, resource)

    return False


def require(actor: Actor | None, verb: Verb, resource: Any) -> None:
    """Raise unless ``can(actor, verb, resource)``.

    Raises:
        AuthenticationError: anonymous caller.
        PermissionDenied: authenticated but not allowed.
    """
    if can(actor, verb, resource):
        return
    if actor is None:
        raise AuthenticationError("Authentication required")
    kind = resource if isinstance(resource, str) else type(resource).__name__.lower()
    raise PermissionDenied(f"Not allowed to {verb.value} this {kind}")
