"""
Quorum Store - Document Store Contract

The remote document store is an external collaborator. This module is the
interface the sync core consumes: query construction, push subscriptions,
point reads, writes, and atomic set-membership field operations.

Paths follow the usual document-store layout: collection paths have an odd
number of segments ("posts", "posts/p1/comments"), document paths an even
number ("posts/p1", "posts/p1/comments/c1").

Implement with PostgresStore for a real deployment, or MemoryStore for tests.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ASCENDING = "asc"
DESCENDING = "desc"

FILTER_OPS: set[str] = {"==", "!=", "<", "<=", ">", ">=", "array-contains", "in"}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """
    Any failure reported by the store.

    code mirrors the usual document-store status names: "not-found",
    "permission-denied", "unavailable", "failed-precondition", "invalid-argument".
    """

    def __init__(self, message: str, code: str = "unknown") -> None:
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def split_path(path: str) -> list[str]:
    segments = [s for s in path.strip("/").split("/") if s]
    if not segments:
        raise StoreError("empty path", code="invalid-argument")
    return segments


def is_document_path(path: str) -> bool:
    return len(split_path(path)) % 2 == 0


def collection_id(collection_path: str) -> str:
    """Last segment of a collection path: "posts/p1/comments" -> "comments"."""
    return split_path(collection_path)[-1]


def new_document_id() -> str:
    """20-character store-assigned identifier."""
    return uuid.uuid4().hex[:20]


# ---------------------------------------------------------------------------
# Field transforms
# ---------------------------------------------------------------------------


class _ServerTimestamp:
    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class ArrayUnion:
    """Add values to an array field, skipping ones already present."""

    values: tuple[Any, ...]


@dataclass(frozen=True)
class ArrayRemove:
    """Remove every occurrence of the values from an array field."""

    values: tuple[Any, ...]


def array_union(*values: Any) -> ArrayUnion:
    return ArrayUnion(tuple(values))


def array_remove(*values: Any) -> ArrayRemove:
    return ArrayRemove(tuple(values))


def apply_transforms(current: dict[str, Any], fields: dict[str, Any], now: datetime) -> dict[str, Any]:
    """
    Merge `fields` into a copy of `current`, resolving server-side transforms.

    Stores call this while holding whatever lock makes the write atomic, so
    array operations never race with another writer.
    """
    result = copy.deepcopy(current)
    for name, value in fields.items():
        if value is SERVER_TIMESTAMP:
            result[name] = now
        elif isinstance(value, ArrayUnion):
            existing = list(result.get(name) or [])
            for item in value.values:
                if item not in existing:
                    existing.append(item)
            result[name] = existing
        elif isinstance(value, ArrayRemove):
            existing = list(result.get(name) or [])
            result[name] = [item for item in existing if item not in value.values]
        else:
            result[name] = copy.deepcopy(value)
    return result


# ---------------------------------------------------------------------------
# Snapshots and query specs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentSnapshot:
    """One document as read from the store. `data` is a private copy."""

    path: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return split_path(self.path)[-1]

    @property
    def collection_path(self) -> str:
        return "/".join(split_path(self.path)[:-1])

    @property
    def parent_path(self) -> str | None:
        """Path of the document owning this document's collection, if any."""
        segments = split_path(self.path)
        if len(segments) <= 2:
            return None
        return "/".join(segments[:-2])


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: str
    value: Any

    def matches(self, data: dict[str, Any]) -> bool:
        if self.field not in data:
            return False
        actual = data[self.field]
        try:
            if self.op == "==":
                return actual == self.value
            if self.op == "!=":
                return actual != self.value
            if self.op == "<":
                return actual < self.value
            if self.op == "<=":
                return actual <= self.value
            if self.op == ">":
                return actual > self.value
            if self.op == ">=":
                return actual >= self.value
            if self.op == "array-contains":
                return isinstance(actual, list) and self.value in actual
            if self.op == "in":
                return actual in self.value
        except TypeError:
            # Mismatched types never match, same as the store's type ordering
            return False
        return False


@dataclass(frozen=True)
class FieldOrder:
    field: str
    direction: str = ASCENDING


@dataclass(frozen=True)
class QuerySpec:
    """
    Immutable description of a query: which collection(s), filters, ordering.

    For collection-group queries `path` is the collection id ("comments") and
    every collection with that id matches, regardless of parent.
    """

    path: str
    group: bool = False
    filters: tuple[FieldFilter, ...] = ()
    order: tuple[FieldOrder, ...] = ()

    def where(self, field_name: str, op: str, value: Any) -> QuerySpec:
        if op not in FILTER_OPS:
            raise StoreError(f"unsupported filter operator {op!r}", code="invalid-argument")
        return QuerySpec(self.path, self.group, self.filters + (FieldFilter(field_name, op, value),), self.order)

    def order_by(self, field_name: str, direction: str = ASCENDING) -> QuerySpec:
        if direction not in (ASCENDING, DESCENDING):
            raise StoreError(f"unsupported direction {direction!r}", code="invalid-argument")
        return QuerySpec(self.path, self.group, self.filters, self.order + (FieldOrder(field_name, direction),))

    def covers(self, collection_path: str) -> bool:
        """True when a write to `collection_path` can change this query's result."""
        if self.group:
            return collection_id(collection_path) == self.path
        return collection_path.strip("/") == self.path.strip("/")

    def apply(self, docs: Iterable[DocumentSnapshot]) -> list[DocumentSnapshot]:
        """Filter and order candidate documents. Documents missing an order field are excluded."""
        matched = [d for d in docs if self.covers(d.collection_path) and all(f.matches(d.data) for f in self.filters)]
        for order in self.order:
            matched = [d for d in matched if d.data.get(order.field) is not None]

        # Stable sorts, least significant key first; ties break by path
        matched.sort(key=lambda d: d.path)
        for order in reversed(self.order):
            matched.sort(key=lambda d, f=order.field: d.data[f], reverse=order.direction == DESCENDING)
        return matched


# ---------------------------------------------------------------------------
# Subscription handles
# ---------------------------------------------------------------------------

SnapshotCallback = Callable[[list[DocumentSnapshot]], None]
ErrorCallback = Callable[[StoreError], None]


class SubscriptionHandle:
    """A live listener registration. release() must be idempotent."""

    @property
    def released(self) -> bool:
        raise NotImplementedError

    def release(self) -> None:
        raise NotImplementedError


class StoreListener(SubscriptionHandle):
    """
    Listener bookkeeping shared by the store adapters.

    Remembers the last delivered result so unchanged results are not pushed
    again. A reported error resets it, so the next successful read is always
    delivered.
    """

    def __init__(
        self,
        spec: QuerySpec,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
        on_release: Callable[[StoreListener], None],
    ) -> None:
        self.spec = spec
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._on_release = on_release
        self._released = False
        self._last: list[tuple[str, dict[str, Any]]] | None = None

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._on_release(self)

    def deliver(self, docs: list[DocumentSnapshot]) -> bool:
        if self._released:
            return False
        fingerprint = [(d.path, d.data) for d in docs]
        if fingerprint == self._last:
            return False
        self._last = fingerprint
        self._on_snapshot(docs)
        return True

    def fail(self, error: StoreError) -> None:
        if self._released:
            return
        self._last = None
        self._on_error(error)


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------


class Query:
    """Chainable query builder bound to a store."""

    def __init__(self, store: DocumentStore, spec: QuerySpec) -> None:
        self._store = store
        self.spec = spec

    def where(self, field_name: str, op: str, value: Any) -> Query:
        return Query(self._store, self.spec.where(field_name, op, value))

    def order_by(self, field_name: str, direction: str = ASCENDING) -> Query:
        return Query(self._store, self.spec.order_by(field_name, direction))

    def listen(self, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> SubscriptionHandle:
        """Push the full result set now and after every change that affects it."""
        return self._store.listen(self.spec, on_snapshot, on_error)

    async def get(self) -> list[DocumentSnapshot]:
        """One-shot read."""
        return await self._store.run_query(self.spec)


class CollectionRef(Query):
    def __init__(self, store: DocumentStore, path: str) -> None:
        if is_document_path(path):
            raise StoreError(f"{path!r} is a document path, not a collection", code="invalid-argument")
        super().__init__(store, QuerySpec(path.strip("/")))
        self.path = path.strip("/")

    @property
    def id(self) -> str:
        return collection_id(self.path)

    def document(self, doc_id: str) -> DocumentRef:
        return DocumentRef(self._store, f"{self.path}/{doc_id}")

    async def add(self, data: dict[str, Any]) -> str:
        """Insert a document with a store-assigned id. Returns the id."""
        return await self._store.add(self.path, data)


class DocumentRef:
    def __init__(self, store: DocumentStore, path: str) -> None:
        if not is_document_path(path):
            raise StoreError(f"{path!r} is a collection path, not a document", code="invalid-argument")
        self._store = store
        self.path = path.strip("/")

    def __repr__(self) -> str:
        return f"DocumentRef({self.path!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, DocumentRef) and other.path == self.path

    def __hash__(self) -> int:
        return hash(self.path)

    @property
    def id(self) -> str:
        return split_path(self.path)[-1]

    def parent(self) -> DocumentRef | None:
        """The document that owns this document's collection, or None at the root."""
        segments = split_path(self.path)
        if len(segments) <= 2:
            return None
        return DocumentRef(self._store, "/".join(segments[:-2]))

    def collection(self, name: str) -> CollectionRef:
        return CollectionRef(self._store, f"{self.path}/{name}")

    async def get(self) -> DocumentSnapshot | None:
        return await self._store.get_document(self.path)

    async def update(self, fields: dict[str, Any]) -> None:
        """Merge fields into an existing document. Raises StoreError("not-found") if missing."""
        await self._store.update(self.path, fields)

    async def update_field(self, field_name: str, value: Any) -> None:
        await self._store.update(self.path, {field_name: value})

    async def delete(self) -> None:
        await self._store.delete(self.path)


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------


class DocumentStore:
    """
    Abstract document store.

    Subclasses implement the primitives (listen, run_query, get_document, add,
    update, delete). The reference builders are shared.
    """

    def collection(self, path: str) -> CollectionRef:
        return CollectionRef(self, path)

    def collection_group(self, name: str) -> Query:
        return Query(self, QuerySpec(name, group=True))

    def document(self, path: str) -> DocumentRef:
        return DocumentRef(self, path)

    def listen(self, spec: QuerySpec, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> SubscriptionHandle:
        raise NotImplementedError

    async def run_query(self, spec: QuerySpec) -> list[DocumentSnapshot]:
        raise NotImplementedError

    async def get_document(self, path: str) -> DocumentSnapshot | None:
        """Point read. Returns None if the document does not exist."""
        raise NotImplementedError

    async def get_all(self, paths: list[str]) -> list[DocumentSnapshot | None]:
        """Batched point reads, in the order given. Adapters may override with a single round trip."""
        return list(await asyncio.gather(*(self.get_document(p) for p in paths)))

    async def add(self, collection_path: str, data: dict[str, Any]) -> str:
        raise NotImplementedError

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        raise NotImplementedError

    async def delete(self, path: str) -> None:
        """Delete a document. Deleting a missing document is not an error. Sub-collections are kept."""
        raise NotImplementedError

    async def close(self) -> None:
        pass
