"""
Quorum Kernel - Shared Types

Data classes used across the live query manager, reducer, and controllers.
These are the contracts that bind the read path together.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

from quorum.store.base import DocumentSnapshot

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Live query events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Snapshot:
    """One pushed result set. Replaces everything delivered before it."""

    records: tuple[DocumentSnapshot, ...]


@dataclass(frozen=True)
class Failure:
    """The live query reported an error. The stream stays open."""

    reason: str


Event = Snapshot | Failure


# ---------------------------------------------------------------------------
# Parse results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class Rejected:
    path: str
    reason: str


ParseResult = Parsed[Any] | Rejected


# ---------------------------------------------------------------------------
# View state
# ---------------------------------------------------------------------------

FailurePolicy = Literal["retain", "clear"]


@dataclass(frozen=True)
class ViewState(Generic[T]):
    """
    What a screen renders from.

    Replaced wholesale on every transition, never mutated. `version` goes up
    by one on every visible change, so observers can tell states apart
    without comparing items.
    """

    items: tuple[T, ...] = ()
    is_loading: bool = True
    error: str | None = None
    version: int = 0
