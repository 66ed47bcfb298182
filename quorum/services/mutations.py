"""
Mutation dispatcher.

Writes go straight to the store; there is no optimistic local echo. Success
is silent: the change shows up when the owning live query pushes its next
snapshot. Failure is returned as an error value and reported to the owning
screen through `on_error`.

Controllers run these coroutines as background tasks (fire-and-continue).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, TypeVar

import pydantic

from quorum.errors import QuorumError, ValidationError, WriteError
from quorum.models.auth import AuthContext
from quorum.models.comment import NewComment, comments_path
from quorum.models.post import FAVORITES_FIELD, POSTS_COLLECTION, NewPost, PostUpdate, post_path
from quorum.store.base import DocumentStore, StoreError, array_remove, array_union

logger = logging.getLogger(__name__)

ErrorSink = Callable[[str], None]

E = TypeVar("E", bound=QuorumError)


def _first_problem(error: pydantic.ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"])
    message = first["msg"].removeprefix("Value error, ")
    return f"{field}: {message}" if field else message


class MutationDispatcher:
    """Create / update / delete / toggle-favorite / comment operations against the store."""

    def __init__(self, store: DocumentStore, on_error: ErrorSink | None = None) -> None:
        self._store = store
        self._on_error = on_error

    def _report(self, error: E) -> E:
        if self._on_error is not None:
            self._on_error(error.message)
        return error

    def _invalid(self, message: str) -> ValidationError:
        logger.info("mutations: rejected locally: %s", message)
        return self._report(ValidationError(message))

    async def _write(self, action: str, write: Callable[[], Awaitable[Any]]) -> WriteError | None:
        try:
            await write()
        except StoreError as e:
            logger.warning("mutations: %s failed (%s): %s", action, e.code, e)
            return self._report(WriteError(f"Could not {action}: {e}"))
        return None

    # -- posts ---------------------------------------------------------------

    async def create_post(
        self,
        title: str,
        body: str,
        topic: str | None,
        auth: AuthContext | None,
    ) -> QuorumError | None:
        """Insert a post with a server timestamp and no favorites."""
        if auth is None:
            return self._invalid("You must be signed in to post")
        try:
            new_post = NewPost(title=title, body=body, topic=topic)
        except pydantic.ValidationError as e:
            return self._invalid(f"Invalid post: {_first_problem(e)}")

        error = await self._write(
            "create post", lambda: self._store.collection(POSTS_COLLECTION).add(new_post.to_document(auth))
        )
        if error is None:
            logger.info("mutations: post created by user=%s", auth.user_id)
        return error

    async def update_post(self, post_id: str, fields: Mapping[str, Any]) -> QuorumError | None:
        """
        Update title/body/topic of a post.

        Not checked against the author here; the store's access rules decide.
        """
        try:
            changes = PostUpdate.model_validate(dict(fields)).to_fields()
        except pydantic.ValidationError as e:
            return self._invalid(f"Invalid update: {_first_problem(e)}")
        if not changes:
            return self._invalid("Nothing to update")

        error = await self._write("update post", lambda: self._store.document(post_path(post_id)).update(changes))
        if error is None:
            logger.info("mutations: post updated post_id=%s fields=%s", post_id, sorted(changes))
        return error

    async def delete_post(self, post_id: str) -> QuorumError | None:
        """Delete a post. Its comments stay behind, which the comment join tolerates."""
        error = await self._write("delete post", lambda: self._store.document(post_path(post_id)).delete())
        if error is None:
            logger.info("mutations: post deleted post_id=%s", post_id)
        return error

    async def toggle_favorite(
        self,
        post_id: str,
        known_favorites: Iterable[str],
        auth: AuthContext | None,
    ) -> QuorumError | None:
        """
        Flip the user's favorite on a post.

        Membership is decided against `known_favorites` (what the caller last
        saw), not a fresh read. Two toggles issued against the same stale list
        both resolve the same way; callers must pass the list from the latest
        snapshot.
        """
        if auth is None:
            return self._invalid("You must be signed in to save favorites")

        user_id = auth.user_id
        if user_id in set(known_favorites):
            operation, verb = array_remove(user_id), "removed from"
        else:
            operation, verb = array_union(user_id), "added to"

        error = await self._write(
            "update favorites",
            lambda: self._store.document(post_path(post_id)).update_field(FAVORITES_FIELD, operation),
        )
        if error is None:
            logger.info("mutations: user=%s %s favorites of post_id=%s", user_id, verb, post_id)
        return error

    # -- comments ------------------------------------------------------------

    async def add_comment(self, post_id: str, text: str, auth: AuthContext | None) -> QuorumError | None:
        """Insert a comment into the post's comments sub-collection."""
        if auth is None:
            return self._invalid("You must be signed in to comment")
        try:
            new_comment = NewComment(text=text)
        except pydantic.ValidationError as e:
            if not text or not text.strip():
                return self._invalid("Comment cannot be empty")
            return self._invalid(f"Invalid comment: {_first_problem(e)}")

        error = await self._write(
            "add comment", lambda: self._store.collection(comments_path(post_id)).add(new_comment.to_document(auth))
        )
        if error is None:
            logger.info("mutations: comment added post_id=%s user=%s", post_id, auth.user_id)
        return error
