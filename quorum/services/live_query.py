"""
Live query manager.

Turns the store's push callbacks into one async stream per subscription:

    subscription = manager.subscribe("home", store.collection("posts").order_by("timestamp", DESCENDING))
    async for event in subscription:   # Snapshot | Failure
        ...

Callbacks may fire on any thread; they are marshalled onto the event loop
that created the subscription, in arrival order. Each logical key has at most
one active subscription: subscribing again under a key releases the previous
one first.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from quorum.kernel.types import Event, Failure, Snapshot
from quorum.store.base import DocumentSnapshot, DocumentStore, Query, QuerySpec, StoreError, SubscriptionHandle

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """
    One live query as an async iterator of Snapshot / Failure events.

    A Failure does not end the stream. Iteration ends only after release().
    """

    def __init__(self, key: str, query: Query, *, label: str | None = None) -> None:
        self.key = key
        self.spec: QuerySpec = query.spec
        self.label = label
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._released = False
        self._handle: SubscriptionHandle | None = None

        try:
            self._handle = query.listen(self._on_snapshot, self._on_error)
        except StoreError as e:
            self._on_error(e)

    def __repr__(self) -> str:
        return f"Subscription(key={self.key!r}, path={self.spec.path!r}, released={self._released})"

    @property
    def released(self) -> bool:
        return self._released

    # -- store callbacks (any thread) ----------------------------------------

    def _on_snapshot(self, docs: list[DocumentSnapshot]) -> None:
        self._push(Snapshot(tuple(docs)))

    def _on_error(self, error: StoreError) -> None:
        logger.warning("live_query: key=%s path=%s failed: %s", self.key, self.spec.path, error)
        reason = f"{self.label}: {error}" if self.label else str(error)
        self._push(Failure(reason))

    def _push(self, event: Event) -> None:
        if self._released:
            return
        self._loop.call_soon_threadsafe(self._enqueue, event)

    def _enqueue(self, event: Event) -> None:
        # Re-checked on the loop: events still in flight when release() ran are dropped
        if not self._released:
            self._queue.put_nowait(event)

    # -- consumer side -------------------------------------------------------

    def release(self) -> None:
        """Stop listening. Idempotent; must be called on the event loop."""
        if self._released:
            return
        self._released = True
        if self._handle is not None:
            self._handle.release()
        self._queue.put_nowait(_CLOSED)
        logger.info("live_query: released key=%s path=%s", self.key, self.spec.path)

    def __aiter__(self) -> AsyncIterator[Event]:
        return self

    async def __anext__(self) -> Event:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item  # type: ignore[return-value]


class LiveQueryManager:
    """Owns the active subscriptions, one per logical key."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self._active: dict[str, Subscription] = {}

    def subscribe(self, key: str, query: Query, *, label: str | None = None) -> Subscription:
        """
        Start a live query under `key`.

        Any subscription already held under `key` is released before the new
        listener is registered, so two listeners never overlap.

        Args:
            key: Logical query key, e.g. "home" or "post:abc123"
            query: Store query to listen to
            label: Prefix for Failure reasons shown to the user

        Returns:
            The new Subscription
        """
        previous = self._active.pop(key, None)
        if previous is not None:
            previous.release()
            logger.info("live_query: resubscribing key=%s", key)

        subscription = Subscription(key, query, label=label)
        self._active[key] = subscription
        logger.info("live_query: subscribed key=%s path=%s group=%s", key, query.spec.path, query.spec.group)
        return subscription

    def release(self, key: str) -> bool:
        """Release the subscription under `key`. Returns False if there was none."""
        subscription = self._active.pop(key, None)
        if subscription is None:
            return False
        subscription.release()
        return True

    def release_subscription(self, subscription: Subscription) -> None:
        """Release `subscription`, and forget it if it is still the active one for its key."""
        if self._active.get(subscription.key) is subscription:
            del self._active[subscription.key]
        subscription.release()

    def active(self, key: str) -> Subscription | None:
        return self._active.get(key)

    @property
    def active_keys(self) -> list[str]:
        return sorted(self._active)

    def close(self) -> None:
        for key in list(self._active):
            self.release(key)
