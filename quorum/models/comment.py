"""Comment models for the per-post comments sub-collection."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from quorum.config import settings
from quorum.models.auth import AuthContext
from quorum.models.post import post_path
from quorum.store.base import SERVER_TIMESTAMP, DocumentSnapshot, split_path

COMMENTS_COLLECTION = "comments"


def comments_path(post_id: str) -> str:
    return f"{post_path(post_id)}/{COMMENTS_COLLECTION}"


class Comment(BaseModel):
    """
    A comment as read from the store.

    post_id is not stored in the document; it comes from the comment's path
    (posts/{post_id}/comments/{id}). A document with no parent does not parse.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    post_id: str = Field(min_length=1)
    text: str
    author_id: str = Field(alias="authorId", min_length=1)
    author_label: str = Field(default=settings.ANONYMOUS_LABEL, alias="authorLabel")
    created_at: datetime | None = Field(default=None, alias="timestamp")

    @classmethod
    def from_document(cls, doc: DocumentSnapshot) -> Comment:
        data: dict[str, Any] = {**doc.data, "id": doc.id}
        data.pop("post_id", None)
        parent = doc.parent_path
        if parent is not None:
            data["post_id"] = split_path(parent)[-1]
        return cls.model_validate(data)


class NewComment(BaseModel):
    """What a user submits to comment on a post."""

    model_config = {"extra": "forbid"}

    text: str = Field(max_length=settings.COMMENT_MAX_LENGTH)

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("comment cannot be empty")
        return value

    def to_document(self, auth: AuthContext) -> dict[str, Any]:
        return {
            "text": self.text,
            "authorId": auth.user_id,
            "authorLabel": auth.display_label,
            "timestamp": SERVER_TIMESTAMP,
        }


class CommentWithPost(BaseModel):
    """A comment joined with its parent post's title, for the profile screen."""

    model_config = ConfigDict(frozen=True)

    comment: Comment
    post_title: str
    post_id: str
