"""
Document store contract and adapters.

PostgresStore is imported from quorum.store.postgres directly so that the
in-memory store works without a database driver configured.
"""

from quorum.store.base import (
    ASCENDING,
    DESCENDING,
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    CollectionRef,
    DocumentRef,
    DocumentSnapshot,
    DocumentStore,
    Query,
    QuerySpec,
    StoreError,
    SubscriptionHandle,
    array_remove,
    array_union,
)
from quorum.store.memory import MemoryStore

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "SERVER_TIMESTAMP",
    "ArrayRemove",
    "ArrayUnion",
    "CollectionRef",
    "DocumentRef",
    "DocumentSnapshot",
    "DocumentStore",
    "MemoryStore",
    "Query",
    "QuerySpec",
    "StoreError",
    "SubscriptionHandle",
    "array_remove",
    "array_union",
]
