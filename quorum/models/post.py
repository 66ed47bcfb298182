"""Post models for the posts collection."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from quorum.config import settings
from quorum.models.auth import AuthContext
from quorum.store.base import SERVER_TIMESTAMP, DocumentSnapshot

POSTS_COLLECTION = "posts"
FAVORITES_FIELD = "favorites"


def post_path(post_id: str) -> str:
    return f"{POSTS_COLLECTION}/{post_id}"


def _clean_title(value: str) -> str:
    if not value.strip():
        raise ValueError("title cannot be blank")
    return value.strip()


class Post(BaseModel):
    """A post as read from the store. Field aliases are the stored field names."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    title: str
    body: str = ""
    author_id: str = Field(alias="authorId", min_length=1)
    author_label: str = Field(default=settings.ANONYMOUS_LABEL, alias="authorLabel")
    created_at: datetime | None = Field(default=None, alias="timestamp")
    topic: str | None = None
    favorites: tuple[str, ...] = ()

    @field_validator("favorites", mode="before")
    @classmethod
    def _favorites_as_set(cls, value: Any) -> Any:
        if value is None:
            return ()
        # Order-preserving dedupe; anything that isn't a list of strings is left for the type check
        if isinstance(value, list | tuple) and all(isinstance(v, str) for v in value):
            return tuple(dict.fromkeys(value))
        return value

    @classmethod
    def from_document(cls, doc: DocumentSnapshot) -> Post:
        return cls.model_validate({**doc.data, "id": doc.id})

    def is_favorited_by(self, user_id: str) -> bool:
        return user_id in self.favorites


class NewPost(BaseModel):
    """What a user submits to create a post."""

    model_config = {"extra": "forbid"}

    title: str = Field(min_length=1, max_length=settings.TITLE_MAX_LENGTH)
    body: str = Field(default="", max_length=settings.BODY_MAX_LENGTH)
    topic: str | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        return _clean_title(value)

    def to_document(self, auth: AuthContext) -> dict[str, Any]:
        """Stored form. The store assigns the id and resolves the timestamp."""
        return {
            "title": self.title,
            "body": self.body,
            "topic": self.topic,
            "authorId": auth.user_id,
            "authorLabel": auth.display_label,
            "timestamp": SERVER_TIMESTAMP,
            FAVORITES_FIELD: [],
        }


class PostUpdate(BaseModel):
    """Editable post fields. Only the fields that were given are written."""

    model_config = {"extra": "forbid"}

    title: str | None = Field(default=None, min_length=1, max_length=settings.TITLE_MAX_LENGTH)
    body: str | None = Field(default=None, max_length=settings.BODY_MAX_LENGTH)
    topic: str | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str | None) -> str | None:
        return None if value is None else _clean_title(value)

    def to_fields(self) -> dict[str, Any]:
        fields = self.model_dump(exclude_unset=True)
        # title and body cannot be cleared; topic can
        return {k: v for k, v in fields.items() if v is not None or k == "topic"}
