"""
Quorum Kernel - View State Reducer

Pure function: (ViewState, Event) → ViewState

A Snapshot replaces the item list wholesale (no accumulation across
snapshots). A Failure keeps the last good items by default so a transient
error does not blank the screen; on_failure="clear" empties them instead.

Identical consecutive events return the previous state object unchanged.
Never raises for bad data: malformed records are dropped during parsing.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from quorum.kernel.parsing import Parser, parse_all
from quorum.kernel.types import Failure, FailurePolicy, Snapshot, T, ViewState

logger = logging.getLogger(__name__)


def initial_state() -> ViewState:
    """Before the first event: nothing to show yet, loading."""
    return ViewState(items=(), is_loading=True, error=None, version=0)


def _next(previous: ViewState[T], items: tuple[T, ...], is_loading: bool, error: str | None) -> ViewState[T]:
    if previous.items == items and previous.is_loading == is_loading and previous.error == error:
        return previous
    return ViewState(items=items, is_loading=is_loading, error=error, version=previous.version + 1)


def reduce(
    previous: ViewState[T],
    event: Snapshot | Failure,
    parse: Parser[T],
    *,
    on_failure: FailurePolicy = "retain",
) -> ViewState[T]:
    """
    Apply one live query event to a view state.

    Args:
        previous: Current state (never modified)
        event: Snapshot or Failure from a subscription
        parse: Record parser for this screen's item type
        on_failure: "retain" keeps items on Failure, "clear" empties them

    Returns:
        The next state, or `previous` itself when nothing changed
    """
    if isinstance(event, Snapshot):
        return _next(previous, parse_all(event.records, parse), False, None)

    if isinstance(event, Failure):
        items = previous.items if on_failure == "retain" else ()
        return _next(previous, items, False, event.reason)

    logger.warning("reducer: ignoring unknown event %r", event)
    return previous


def with_error(previous: ViewState[T], message: str) -> ViewState[T]:
    """Surface a mutation failure. Items and loading flag are untouched."""
    return _next(previous, previous.items, previous.is_loading, message)


def mark_loading(previous: ViewState[T]) -> ViewState[T]:
    """A new query is on its way (filter changed). Current items stay visible until it lands."""
    if previous.is_loading:
        return previous
    return replace(previous, is_loading=True, version=previous.version + 1)


def settle(previous: ViewState[T], items: tuple[T, ...]) -> ViewState[T]:
    """Result of a one-shot read (no live query behind it)."""
    return _next(previous, items, False, None)
