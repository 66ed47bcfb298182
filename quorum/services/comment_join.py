"""
"My comments" join.

The store has no join operator. Comments live under their post
(posts/{post_id}/comments/{id}), so building "all my comments with their
post's title" takes two steps:

  1. a collection-group query over every `comments` collection, filtered by
     author (ordered by timestamp only if the store has the index for it)
  2. a point read of each distinct parent post, found by walking the
     comment's path up one level, issued as a single batched read

Not transactional. A post deleted between the two steps, or any parent that
cannot be read, degrades that row to "Unknown post" with an empty post id.
"""

from __future__ import annotations

import logging

from quorum.config import settings
from quorum.errors import ListenError
from quorum.kernel.parsing import parse_comment, parse_post
from quorum.kernel.types import Parsed
from quorum.models.comment import COMMENTS_COLLECTION, Comment, CommentWithPost
from quorum.models.post import Post
from quorum.store.base import DESCENDING, DocumentStore, Query, StoreError

logger = logging.getLogger(__name__)


class CommentJoinEngine:
    """
    Builds CommentWithPost rows for one author.

    `ordered` is an explicit store capability: True issues the query ordered by
    timestamp (newest first); False issues it unordered and the rows come back
    in whatever order the store returns them.
    """

    def __init__(self, store: DocumentStore, *, ordered: bool | None = None) -> None:
        self._store = store
        self.ordered = settings.ORDERED_COMMENT_QUERY if ordered is None else ordered

    def query(self, user_id: str) -> Query:
        query = self._store.collection_group(COMMENTS_COLLECTION).where("authorId", "==", user_id)
        if self.ordered:
            query = query.order_by("timestamp", DESCENDING)
        return query

    async def comments_by_author(self, user_id: str) -> list[CommentWithPost]:
        """
        All comments by `user_id`, each with its post's title.

        Raises:
            ListenError: the comments query itself failed
        """
        try:
            docs = await self.query(user_id).get()
        except StoreError as e:
            logger.warning("join: comments query failed user=%s (%s): %s", user_id, e.code, e)
            raise ListenError(f"Could not load your comments: {e}") from e

        rows: list[tuple[Comment, str | None]] = []
        for doc in docs:
            parsed = parse_comment(doc)
            if not isinstance(parsed, Parsed):
                logger.debug("join: dropped comment %s (%s)", parsed.path, parsed.reason)
                continue
            parent = self._store.document(doc.path).parent()
            rows.append((parsed.value, parent.path if parent is not None else None))

        posts = await self._load_posts(sorted({path for _, path in rows if path is not None}))
        logger.info("join: user=%s comments=%d posts=%d", user_id, len(rows), len(posts))
        return [self._compose(comment, posts.get(path) if path else None) for comment, path in rows]

    async def _load_posts(self, paths: list[str]) -> dict[str, Post]:
        if not paths:
            return {}
        try:
            snapshots = await self._store.get_all(paths)
        except StoreError as e:
            logger.warning("join: parent lookup failed for %d posts: %s", len(paths), e)
            return {}

        posts: dict[str, Post] = {}
        for path, snapshot in zip(paths, snapshots, strict=True):
            if snapshot is None:
                continue
            parsed = parse_post(snapshot)
            if isinstance(parsed, Parsed):
                posts[path] = parsed.value
        return posts

    @staticmethod
    def _compose(comment: Comment, post: Post | None) -> CommentWithPost:
        if post is None:
            return CommentWithPost(comment=comment, post_title=settings.UNKNOWN_POST_LABEL, post_id="")
        return CommentWithPost(comment=comment, post_title=post.title, post_id=post.id)
