"""Authenticated user identity, passed explicitly to controllers and mutations."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from quorum.config import settings


class AuthContext(BaseModel):
    """
    Who is acting. Immutable; signing out means using None, signing in as
    someone else means a new AuthContext.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    display_label: str = settings.ANONYMOUS_LABEL


class AuthProvider(Protocol):
    """The authentication collaborator. Only read, never mutated, by the core."""

    def current_user(self) -> AuthContext | None: ...
