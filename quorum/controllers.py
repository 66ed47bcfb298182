"""
Screen controllers.

A controller owns exactly one ViewState and one live query subscription for
its screen. Events from the subscription are reduced on a single pump task,
so reductions never interleave. Mutations run as separate tasks; their
failures land in the same ViewState's error slot.

Controllers must be created on a running event loop and closed when the
screen goes away:

    async with HomeController(queries, auth) as home:
        await home.wait_for(lambda s: not s.is_loading)
        home.create_post("Gravity", "Notes on gravity", "Física")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Mapping
from typing import Any, Generic, Self

from quorum.config import settings
from quorum.errors import ListenError, QuorumError
from quorum.kernel.parsing import Parser, parse_comment, parse_post
from quorum.kernel.reducer import initial_state, mark_loading, reduce, settle, with_error
from quorum.kernel.types import Event, FailurePolicy, T, ViewState
from quorum.models.auth import AuthContext, AuthProvider
from quorum.models.comment import Comment, CommentWithPost, comments_path
from quorum.models.post import FAVORITES_FIELD, POSTS_COLLECTION, Post
from quorum.services.comment_join import CommentJoinEngine
from quorum.services.live_query import LiveQueryManager, Subscription
from quorum.services.mutations import MutationDispatcher
from quorum.store.base import ASCENDING, DESCENDING, Query

logger = logging.getLogger(__name__)

DEFAULT_WAIT_SECONDS = 5.0

StateListener = Callable[[ViewState], None]


def _default_failure_policy() -> FailurePolicy:
    return "clear" if settings.CLEAR_ITEMS_ON_FAILURE else "retain"


class ScreenController(Generic[T]):
    """Base controller: state ownership, subscription lifecycle, mutation tasks."""

    key: str = "screen"
    label: str = "Could not load"

    def __init__(
        self,
        queries: LiveQueryManager,
        auth: AuthContext | None = None,
        *,
        parse: Parser[T],
        on_failure: FailurePolicy | None = None,
    ) -> None:
        self.queries = queries
        self.store = queries.store
        self.auth = auth
        self.parse = parse
        self.on_failure = on_failure or _default_failure_policy()
        self.mutations = MutationDispatcher(self.store, on_error=self.report_error)

        self._state: ViewState[T] = initial_state()
        self._changed = asyncio.Event()
        self._listeners: list[StateListener] = []
        self._tasks: set[asyncio.Task] = set()
        self._subscription: Subscription | None = None
        self._pump: asyncio.Task | None = None
        self._closed = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(key={self.key!r}, version={self._state.version})"

    @classmethod
    def from_provider(cls, queries: LiveQueryManager, provider: AuthProvider, *args: Any, **kwargs: Any) -> Self:
        """Open the screen as whoever `provider` says is signed in right now."""
        return cls(queries, provider.current_user(), *args, **kwargs)

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> ViewState[T]:
        return self._state

    @property
    def subscription(self) -> Subscription | None:
        return self._subscription

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Call `listener` with every new state. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    def _transition(self, state: ViewState[T]) -> None:
        if state is self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                # A broken observer must not stop this screen from reducing
                logger.exception("controller: listener failed on %s", self.key)
        self._notify()

    def report_error(self, message: str) -> None:
        """Error sink for this screen's mutations."""
        if not self._closed:
            self._transition(with_error(self._state, message))

    async def _wait(self, read: Callable[[], Any], predicate: Callable[[Any], bool], timeout: float) -> Any:
        async with asyncio.timeout(timeout):
            while not predicate(read()):
                await self._changed.wait()
        return read()

    async def wait_for(
        self, predicate: Callable[[ViewState[T]], bool], timeout: float = DEFAULT_WAIT_SECONDS
    ) -> ViewState[T]:
        """Wait until the state satisfies `predicate`. Raises TimeoutError."""
        return await self._wait(lambda: self._state, predicate, timeout)

    # -- subscription --------------------------------------------------------

    def _listen(self, query: Query) -> None:
        """Start (or replace) this screen's live query."""
        if self._closed:
            return
        if self._pump is not None:
            self._pump.cancel()
        self._subscription = self.queries.subscribe(self.key, query, label=self.label)
        self._pump = asyncio.create_task(self._run(self._subscription), name=f"pump:{self.key}")

    async def _run(self, subscription: Subscription) -> None:
        async for event in subscription:
            self._apply(event)

    def _apply(self, event: Event) -> None:
        self._transition(reduce(self._state, event, self.parse, on_failure=self.on_failure))

    def _require_auth(self, message: str) -> AuthContext | None:
        if self.auth is None:
            logger.info("controller: %s opened without a session", self.key)
            self._transition(settle(self._state, ()))
            self.report_error(message)
        return self.auth

    # -- mutations -----------------------------------------------------------

    def _dispatch(self, operation: Coroutine[Any, Any, QuorumError | None]) -> asyncio.Task:
        """Run a mutation in the background; the caller does not wait for the store."""
        task = asyncio.create_task(operation)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -- lifecycle -----------------------------------------------------------

    async def close(self) -> None:
        """Release the subscription and let in-flight mutations finish. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self.queries.release_subscription(self._subscription)
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("controller: pump for %s had failed", self.key)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("controller: closed %s", self.key)

    async def __aenter__(self) -> ScreenController[T]:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


class PostListController(ScreenController[Post]):
    """Shared post actions for screens that list posts."""

    label = "Could not load posts"

    def __init__(self, queries: LiveQueryManager, auth: AuthContext | None = None, **kwargs: Any) -> None:
        super().__init__(queries, auth, parse=parse_post, **kwargs)

    def create_post(self, title: str, body: str, topic: str | None = None) -> asyncio.Task:
        return self._dispatch(self.mutations.create_post(title, body, topic, self.auth))

    def update_post(self, post_id: str, fields: Mapping[str, Any]) -> asyncio.Task:
        return self._dispatch(self.mutations.update_post(post_id, fields))

    def delete_post(self, post_id: str) -> asyncio.Task:
        return self._dispatch(self.mutations.delete_post(post_id))

    def toggle_favorite(self, post: Post) -> asyncio.Task:
        """Toggle against the favorites carried by `post`, i.e. what this screen last received."""
        return self._dispatch(self.mutations.toggle_favorite(post.id, post.favorites, self.auth))


class HomeController(PostListController):
    """All posts, newest first, optionally narrowed to one topic."""

    key = "home"

    def __init__(
        self,
        queries: LiveQueryManager,
        auth: AuthContext | None = None,
        topic: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(queries, auth, **kwargs)
        self.topic = topic
        self._listen(self._query())

    def _query(self) -> Query:
        query: Query = self.store.collection(POSTS_COLLECTION)
        if self.topic is not None:
            query = query.where("topic", "==", self.topic)
        return query.order_by("timestamp", DESCENDING)

    def select_topic(self, topic: str | None) -> None:
        """Change the topic filter. The old subscription is released before the new one starts."""
        if topic == self.topic:
            return
        self.topic = topic
        self._transition(mark_loading(self._state))
        self._listen(self._query())


class FavoritesController(PostListController):
    """Posts the signed-in user has favorited."""

    key = "favorites"
    label = "Could not load favorites"

    def __init__(self, queries: LiveQueryManager, auth: AuthContext | None = None, **kwargs: Any) -> None:
        super().__init__(queries, auth, **kwargs)
        if self._require_auth("Sign in to see your favorites") is not None:
            self._listen(
                self.store.collection(POSTS_COLLECTION)
                .where(FAVORITES_FIELD, "array-contains", self.auth.user_id)
                .order_by("timestamp", DESCENDING)
            )


class PostDetailController(ScreenController[Comment]):
    """Comments of one post, oldest first."""

    label = "Could not load comments"

    def __init__(self, queries: LiveQueryManager, auth: AuthContext | None, post_id: str, **kwargs: Any) -> None:
        super().__init__(queries, auth, parse=parse_comment, **kwargs)
        self.post_id = post_id
        self.key = f"post:{post_id}"
        self._listen(self.store.collection(comments_path(post_id)).order_by("timestamp", ASCENDING))

    def add_comment(self, text: str) -> asyncio.Task:
        return self._dispatch(self.mutations.add_comment(self.post_id, text, self.auth))


class ProfileController(PostListController):
    """
    The signed-in user's posts (live) and comments (one-shot join).

    `state` holds the posts; `comments_state` holds the joined comments. Both
    belong to this controller and share its error reporting for mutations.
    """

    key = "profile"
    label = "Could not load your posts"

    def __init__(
        self,
        queries: LiveQueryManager,
        auth: AuthContext | None = None,
        join: CommentJoinEngine | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(queries, auth, **kwargs)
        self.join = join or CommentJoinEngine(self.store)
        self._comments_state: ViewState[CommentWithPost] = initial_state()
        self._comments_generation = 0

        if self._require_auth("Sign in to see your profile") is None:
            self._set_comments(settle(self._comments_state, ()))
            return
        self._listen(
            self.store.collection(POSTS_COLLECTION)
            .where("authorId", "==", self.auth.user_id)
            .order_by("timestamp", DESCENDING)
        )
        self.load_comments()

    @property
    def comments_state(self) -> ViewState[CommentWithPost]:
        return self._comments_state

    def _set_comments(self, state: ViewState[CommentWithPost]) -> None:
        if state is self._comments_state:
            return
        self._comments_state = state
        self._notify()

    def load_comments(self) -> asyncio.Task:
        """
        (Re)run the comments join. The join is a one-shot read, not a live query.

        Only the most recent load may settle `comments_state`; an earlier one
        that finishes later is discarded.
        """
        self._comments_generation += 1
        self._set_comments(mark_loading(self._comments_state))
        return self._dispatch(self._load_comments(self._comments_generation))

    async def _load_comments(self, generation: int) -> None:
        if self.auth is None:
            return None
        try:
            rows = await self.join.comments_by_author(self.auth.user_id)
        except ListenError as e:
            if generation != self._comments_generation:
                return None
            self._set_comments(with_error(settle(self._comments_state, self._comments_state.items), e.message))
            return None
        if generation != self._comments_generation:
            logger.debug("controller: dropped stale comments load %d", generation)
            return None
        self._set_comments(settle(self._comments_state, tuple(rows)))
        return None

    async def wait_for_comments(
        self,
        predicate: Callable[[ViewState[CommentWithPost]], bool],
        timeout: float = DEFAULT_WAIT_SECONDS,
    ) -> ViewState[CommentWithPost]:
        return await self._wait(lambda: self._comments_state, predicate, timeout)
