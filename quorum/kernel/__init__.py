"""
Quorum Kernel - the pure read path.

Three pieces:
  types    - Snapshot / Failure events, parse results, ViewState
  parsing  - store document → domain model, total (Parsed | Rejected)
  reducer  - (ViewState, Event) → ViewState  (pure, deterministic)
"""

from quorum.kernel.parsing import parse_all, parse_comment, parse_post
from quorum.kernel.reducer import initial_state, mark_loading, reduce, settle, with_error
from quorum.kernel.types import Event, Failure, Parsed, Rejected, Snapshot, ViewState

__all__ = [
    "Event",
    "Failure",
    "Parsed",
    "Rejected",
    "Snapshot",
    "ViewState",
    "parse_all",
    "parse_comment",
    "parse_post",
    "initial_state",
    "mark_loading",
    "reduce",
    "settle",
    "with_error",
]
