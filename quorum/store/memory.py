"""In-memory document store with live listeners, for tests and local runs."""

from __future__ import annotations

import copy
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from quorum.store.base import (
    DocumentSnapshot,
    DocumentStore,
    ErrorCallback,
    QuerySpec,
    SnapshotCallback,
    StoreError,
    StoreListener,
    SubscriptionHandle,
    apply_transforms,
    is_document_path,
    new_document_id,
    split_path,
)

logger = logging.getLogger(__name__)


class MemoryStore(DocumentStore):
    """
    Documents live in a dict keyed by path.

    Listeners receive the full result set synchronously when they register and
    after every write that changes it. Failure hooks (`fail_writes`,
    `fail_reads`, `fail_queries`, `notify_error`) let tests exercise the error
    paths of the core.
    """

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.write_count = 0
        self.fail_writes: StoreError | None = None
        self.fail_reads: StoreError | None = None
        self.fail_queries: StoreError | None = None
        self._listeners: list[StoreListener] = []
        self._last_timestamp: datetime | None = None

    # -- listeners -----------------------------------------------------------

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def listen(self, spec: QuerySpec, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> SubscriptionHandle:
        listener = StoreListener(spec, on_snapshot, on_error, self._remove_listener)
        self._listeners.append(listener)
        logger.debug("store: listener added path=%s group=%s", spec.path, spec.group)
        listener.deliver(self._evaluate(spec))
        return listener

    def _remove_listener(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
            logger.debug("store: listener released path=%s", listener.spec.path)

    def notify_error(self, error: StoreError, collection_path: str | None = None) -> None:
        """Report `error` to every listener (or those covering `collection_path`)."""
        for listener in list(self._listeners):
            if collection_path is None or listener.spec.covers(collection_path):
                listener.fail(error)

    def _broadcast(self, collection_path: str) -> None:
        for listener in list(self._listeners):
            if listener.spec.covers(collection_path):
                listener.deliver(self._evaluate(listener.spec))

    def _evaluate(self, spec: QuerySpec) -> list[DocumentSnapshot]:
        return spec.apply(self._snapshot(path) for path in self.documents)

    def _snapshot(self, path: str) -> DocumentSnapshot:
        return DocumentSnapshot(path=path, data=copy.deepcopy(self.documents[path]))

    # -- reads ---------------------------------------------------------------

    async def run_query(self, spec: QuerySpec) -> list[DocumentSnapshot]:
        if self.fail_queries is not None:
            raise self.fail_queries
        return self._evaluate(spec)

    async def get_document(self, path: str) -> DocumentSnapshot | None:
        if self.fail_reads is not None:
            raise self.fail_reads
        path = path.strip("/")
        if path not in self.documents:
            return None
        return self._snapshot(path)

    # -- writes --------------------------------------------------------------

    def _server_now(self) -> datetime:
        now = datetime.now(UTC)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _check_writable(self) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes

    async def add(self, collection_path: str, data: dict[str, Any]) -> str:
        self._check_writable()
        collection_path = collection_path.strip("/")
        if len(split_path(collection_path)) % 2 == 0:
            raise StoreError(f"{collection_path!r} is not a collection path", code="invalid-argument")

        doc_id = new_document_id()
        path = f"{collection_path}/{doc_id}"
        self.documents[path] = apply_transforms({}, data, self._server_now())
        self.write_count += 1
        logger.debug("store: added %s", path)
        self._broadcast(collection_path)
        return doc_id

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        self._check_writable()
        path = path.strip("/")
        if not is_document_path(path):
            raise StoreError(f"{path!r} is not a document path", code="invalid-argument")
        if path not in self.documents:
            raise StoreError(f"No document to update: {path}", code="not-found")

        self.documents[path] = apply_transforms(self.documents[path], fields, self._server_now())
        self.write_count += 1
        self._broadcast(DocumentSnapshot(path).collection_path)

    async def delete(self, path: str) -> None:
        self._check_writable()
        path = path.strip("/")
        self.write_count += 1
        if self.documents.pop(path, None) is not None:
            self._broadcast(DocumentSnapshot(path).collection_path)

    def put(self, path: str, data: dict[str, Any]) -> None:
        """Seed a document at a fixed path. Transforms are resolved; listeners are notified."""
        path = path.strip("/")
        if not is_document_path(path):
            raise StoreError(f"{path!r} is not a document path", code="invalid-argument")
        self.documents[path] = apply_transforms({}, data, self._server_now())
        self._broadcast(DocumentSnapshot(path).collection_path)
