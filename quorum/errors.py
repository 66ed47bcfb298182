"""
Error taxonomy for the sync core.

Every error carries a user-facing message. Store failures are converted into
one of these at the boundary of the component that issued the call; they end
up as data in a ViewState, never as a crash.
"""

from __future__ import annotations


class QuorumError(Exception):
    """Base class. `message` is what the screen shows."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(QuorumError):
    """Local precondition failed (blank text, no session). Never reaches the store."""

    pass


class ListenError(QuorumError):
    """A live query or one-shot read failed (permissions, connectivity, missing index)."""

    pass


class WriteError(QuorumError):
    """A mutation round-trip to the store failed."""

    pass
