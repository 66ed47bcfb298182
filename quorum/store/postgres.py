"""
PostgresStore adapter for the document store contract.

Documents are rows of a single `documents` table holding JSONB data. Every
write issues a NOTIFY on the store's channel with the collection path; one
dedicated connection LISTENs and re-runs the affected live queries.

Array transforms and server timestamps are resolved inside a transaction that
holds the row lock (SELECT ... FOR UPDATE), so ArrayUnion/ArrayRemove are
atomic with respect to other writers.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable
from datetime import datetime
from typing import Any

import asyncpg

from quorum.config import settings
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
    collection_id,
    is_document_path,
    new_document_id,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    path          TEXT PRIMARY KEY,
    collection    TEXT NOT NULL,
    collection_id TEXT NOT NULL,
    data          JSONB NOT NULL DEFAULT '{}'::jsonb,
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS documents_collection_idx ON documents (collection);
CREATE INDEX IF NOT EXISTS documents_collection_id_idx ON documents (collection_id);
"""

# Datetimes are tagged so they come back as datetimes, not strings
_DATE_KEY = "$date"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATE_KEY: value.isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _json_object_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and _DATE_KEY in obj:
        return datetime.fromisoformat(obj[_DATE_KEY])
    return obj


def encode_json(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def decode_json(raw: str) -> Any:
    return json.loads(raw, object_hook=_json_object_hook)


async def _init_connection(conn: asyncpg.Connection) -> None:
    """JSONB codec with datetime tagging on every pooled connection."""
    await conn.set_type_codec(
        "jsonb",
        encoder=encode_json,
        decoder=decode_json,
        schema="pg_catalog",
    )


# What asyncpg or the socket can raise at the adapter boundary. InterfaceError
# is raised when the pool is closing or the connection is closed or busy.
_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _store_error(exc: Exception) -> StoreError:
    if isinstance(exc, asyncpg.InsufficientPrivilegeError):
        return StoreError(str(exc), code="permission-denied")
    if isinstance(exc, asyncpg.PostgresError):
        return StoreError(str(exc), code="failed-precondition")
    return StoreError(str(exc) or type(exc).__name__, code="unavailable")


class _PostgresListener(StoreListener):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # Refreshes for one listener run one at a time so results arrive in order
        self.lock = asyncio.Lock()


class PostgresStore(DocumentStore):
    """
    Postgres-backed document store.

    Usage:
        store = await PostgresStore.connect()
        try:
            ...
        finally:
            await store.close()
    """

    def __init__(self, pool: asyncpg.Pool, channel: str | None = None) -> None:
        self.pool = pool
        self.channel = channel or settings.NOTIFY_CHANNEL
        self._listeners: list[_PostgresListener] = []
        self._listen_conn: asyncpg.Connection | None = None
        self._listen_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    async def connect(cls, dsn: str | None = None, channel: str | None = None) -> PostgresStore:
        """Create the pool, ensure the schema exists, and return a ready store."""
        dsn = dsn or settings.DATABASE_URL
        if not dsn:
            raise RuntimeError("DATABASE_URL environment variable is required")
        pool = await asyncpg.create_pool(dsn=dsn, min_size=1, max_size=10, init=_init_connection)
        store = cls(pool, channel=channel)
        await store.ensure_schema()
        return store

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def close(self) -> None:
        """Release listeners, the LISTEN connection, and the pool."""
        for listener in list(self._listeners):
            listener.release()
        for task in list(self._tasks):
            task.cancel()
        if self._listen_conn is not None:
            try:
                await self._listen_conn.remove_listener(self.channel, self._on_notify)
            finally:
                await self.pool.release(self._listen_conn)
                self._listen_conn = None
        await self.pool.close()

    # -- reads ---------------------------------------------------------------

    async def run_query(self, spec: QuerySpec) -> list[DocumentSnapshot]:
        column = "collection_id" if spec.group else "collection"
        try:
            async with self.pool.acquire() as conn:
                # column is one of two fixed names
                rows = await conn.fetch(
                    f"SELECT path, data FROM documents WHERE {column} = $1",  # nosec B608
                    spec.path.strip("/"),
                )
        except _DRIVER_ERRORS as e:
            raise _store_error(e) from e
        return spec.apply(DocumentSnapshot(path=row["path"], data=row["data"]) for row in rows)

    async def get_document(self, path: str) -> DocumentSnapshot | None:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("SELECT path, data FROM documents WHERE path = $1", path.strip("/"))
        except _DRIVER_ERRORS as e:
            raise _store_error(e) from e
        return DocumentSnapshot(path=row["path"], data=row["data"]) if row else None

    async def get_all(self, paths: list[str]) -> list[DocumentSnapshot | None]:
        """One round trip for all paths."""
        if not paths:
            return []
        wanted = [p.strip("/") for p in paths]
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch("SELECT path, data FROM documents WHERE path = ANY($1::text[])", wanted)
        except _DRIVER_ERRORS as e:
            raise _store_error(e) from e
        found = {row["path"]: DocumentSnapshot(path=row["path"], data=row["data"]) for row in rows}
        return [found.get(p) for p in wanted]

    # -- writes --------------------------------------------------------------

    async def add(self, collection_path: str, data: dict[str, Any]) -> str:
        collection_path = collection_path.strip("/")
        if is_document_path(collection_path):
            raise StoreError(f"{collection_path!r} is not a collection path", code="invalid-argument")
        doc_id = new_document_id()
        path = f"{collection_path}/{doc_id}"

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    now = await conn.fetchval("SELECT clock_timestamp()")
                    await conn.execute(
                        """
                        INSERT INTO documents (path, collection, collection_id, data, updated_at)
                        VALUES ($1, $2, $3, $4, $5)
                        """,
                        path,
                        collection_path,
                        collection_id(collection_path),
                        apply_transforms({}, data, now),
                        now,
                    )
                    # Delivered on commit
                    await conn.execute("SELECT pg_notify($1, $2)", self.channel, collection_path)
        except _DRIVER_ERRORS as e:
            raise _store_error(e) from e

        logger.debug("store: added %s", path)
        return doc_id

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        path = path.strip("/")
        snapshot = DocumentSnapshot(path)
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow("SELECT data FROM documents WHERE path = $1 FOR UPDATE", path)
                    if row is None:
                        raise StoreError(f"No document to update: {path}", code="not-found")
                    now = await conn.fetchval("SELECT clock_timestamp()")
                    await conn.execute(
                        "UPDATE documents SET data = $2, updated_at = $3 WHERE path = $1",
                        path,
                        apply_transforms(row["data"], fields, now),
                        now,
                    )
                    await conn.execute("SELECT pg_notify($1, $2)", self.channel, snapshot.collection_path)
        except _DRIVER_ERRORS as e:
            raise _store_error(e) from e

    async def delete(self, path: str) -> None:
        path = path.strip("/")
        snapshot = DocumentSnapshot(path)
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    result = await conn.execute("DELETE FROM documents WHERE path = $1", path)
                    if result == "DELETE 1":
                        await conn.execute("SELECT pg_notify($1, $2)", self.channel, snapshot.collection_path)
        except _DRIVER_ERRORS as e:
            raise _store_error(e) from e

    # -- live queries --------------------------------------------------------

    def listen(self, spec: QuerySpec, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> SubscriptionHandle:
        """Register a listener. Must be called from the event loop; the first snapshot arrives asynchronously."""
        listener = _PostgresListener(spec, on_snapshot, on_error, self._remove_listener)
        self._listeners.append(listener)
        self._spawn(self._start(listener))
        return listener

    def _remove_listener(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _start(self, listener: _PostgresListener) -> None:
        try:
            await self._ensure_listening()
        except _DRIVER_ERRORS as e:
            logger.warning("store: could not LISTEN on %s: %s", self.channel, e)
            listener.fail(_store_error(e))
            return
        await self._refresh(listener)

    async def _ensure_listening(self) -> None:
        async with self._listen_lock:
            if self._listen_conn is not None:
                return
            conn = await self.pool.acquire()
            try:
                await conn.add_listener(self.channel, self._on_notify)
            except BaseException:
                await self.pool.release(conn)
                raise
            self._listen_conn = conn
            logger.info("store: listening on channel %s", self.channel)

    def _on_notify(self, conn: asyncpg.Connection, pid: int, channel: str, payload: str) -> None:
        for listener in list(self._listeners):
            if listener.spec.covers(payload):
                self._spawn(self._refresh(listener))

    async def _refresh(self, listener: _PostgresListener) -> None:
        async with listener.lock:
            if listener.released:
                return
            try:
                docs = await self.run_query(listener.spec)
            except StoreError as e:
                logger.warning("store: live query failed path=%s: %s", listener.spec.path, e)
                listener.fail(e)
                return
            listener.deliver(docs)
