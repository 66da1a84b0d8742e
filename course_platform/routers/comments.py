"""Section comments: one level of replies, optional anonymous display.

Every mutation goes through ``permissions.require``: the author or an admin
may edit and delete.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from course_platform.errors import NotFoundError, ValidationError
from course_platform.security.auth import Actor, require_actor
from course_platform.security.permissions import Verb, require
from course_platform.security.sanitization import sanitize_text, validate_input_length
from course_platform.store import DataStore, get_store
from course_platform.store.models import Comment, Role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/comments", tags=["comments"])

MAX_COMMENT_LENGTH = 2000


class CommentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: uuid.UUID = Field(alias="courseId")
    section_id: uuid.UUID = Field(alias="sectionId")
    content: str
    parent_comment_id: uuid.UUID | None = Field(default=None, alias="parentCommentId")
    comment_type: str = Field(default="public", alias="commentType")


class CommentUpdate(BaseModel):
    content: str


def _clean_content(raw: str) -> str:
    if not validate_input_length(raw, 1, MAX_COMMENT_LENGTH):
        raise ValidationError(f"Comment content is required (max {MAX_COMMENT_LENGTH} characters)")
    content = sanitize_text(raw, max_length=MAX_COMMENT_LENGTH)
    if not content:
        raise ValidationError("Comment content cannot be empty")
    return content


def _format(comment: Comment, store: DataStore) -> dict:
    profile = store.get_profile(comment.user_id)
    if comment.is_anonymous:
        user_name = "Anonymous"
    else:
        user_name = (profile.display_name if profile else "") or "User"
    return {
        "id": comment.id,
        "content": comment.content,
        "created_at": comment.created_at.isoformat(),
        "updated_at": comment.updated_at.isoformat(),
        "is_edited": comment.is_edited,
        "user_id": comment.user_id,
        "user_name": user_name,
        "is_admin": bool(profile and profile.role == Role.ADMIN),
        "parent_comment_id": comment.parent_comment_id,
        "is_anonymous": comment.is_anonymous,
    }


def _load(comment_id: uuid.UUID, store: DataStore) -> Comment:
    comment = store.get_comment(str(comment_id))
    if comment is None:
        raise NotFoundError("Comment not found")
    return comment


@router.get("")
def list_comments(
    course_id: uuid.UUID = Query(alias="courseId"),
    section_id: uuid.UUID = Query(alias="sectionId"),
    store: DataStore = Depends(get_store),
):
    """Top-level comments newest first, each with its replies oldest first."""
    rows = store.list_comments(str(course_id), str(section_id))
    replies: dict[str, list[dict]] = {}
    for comment in reversed(rows):
        if comment.parent_comment_id:
            replies.setdefault(comment.parent_comment_id, []).append(_format(comment, store))

    comments = []
    for comment in rows:
        if comment.parent_comment_id:
            continue
        item = _format(comment, store)
        item["replies"] = replies.get(comment.id, [])
        comments.append(item)
    return {"comments": comments}


@router.post("", status_code=201)
def create_comment(
    body: CommentCreate,
    store: DataStore = Depends(get_store),
    actor: Actor = Depends(require_actor),
):
    content = _clean_content(body.content)
    if actor.user_id is None:
        raise ValidationError("Comments need a user account")

    course_id, section_id = str(body.course_id), str(body.section_id)
    parent_id = None
    if body.parent_comment_id is not None:
        parent = store.get_comment(str(body.parent_comment_id))
        if parent is None or parent.course_id != course_id or parent.section_id != section_id:
            raise ValidationError("Invalid parent comment")
        if parent.parent_comment_id is not None:
            raise ValidationError("Replies cannot be nested")
        parent_id = parent.id

    comment = Comment(
        course_id=course_id,
        section_id=section_id,
        user_id=actor.user_id,
        content=content,
        parent_comment_id=parent_id,
        is_anonymous=body.comment_type == "anonymous",
    )
    require(actor, Verb.CREATE, comment)
    comment = store.create_comment(comment)
    logger.info("Comment %s created by %s", comment.id, actor.user_id)
    return {"comment": _format(comment, store)}


@router.put("/{comment_id}")
def update_comment(
    comment_id: uuid.UUID,
    body: CommentUpdate,
    store: DataStore = Depends(get_store),
    actor: Actor = Depends(require_actor),
):
    content = _clean_content(body.content)
    comment = _load(comment_id, store)
    require(actor, Verb.UPDATE, comment)
    updated = store.update_comment(comment.id, content)
    if updated is None:
        raise NotFoundError("Comment not found")
    return {"comment": _format(updated, store)}


@router.delete("/{comment_id}")
def delete_comment(
    comment_id: uuid.UUID,
    store: DataStore = Depends(get_store),
    actor: Actor = Depends(require_actor),
):
    comment = _load(comment_id, store)
    require(actor, Verb.DELETE, comment)
    store.delete_comment(comment.id)
    logger.info("Comment %s deleted by %s", comment.id, actor.user_id)
    return {"success": True}
