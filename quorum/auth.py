"""
Session tokens.

The authentication collaborator hands out signed session tokens; this module
turns one into an AuthContext (and issues them for tests and local runs).
There is no process-wide "current user": callers pass the AuthContext they
got from here to every controller and mutation.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt

from quorum import config
from quorum.errors import ValidationError
from quorum.models.auth import AuthContext


def _secret(secret: str | None) -> str:
    value = secret or config.settings.JWT_SECRET
    if not value:
        raise RuntimeError("JWT_SECRET environment variable is required")
    return value


def create_session_token(context: AuthContext, *, secret: str | None = None, expiry_hours: int | None = None) -> str:
    """
    Create a signed session token for a user.

    Args:
        context: The user the token identifies
        secret: Signing key (defaults to JWT_SECRET)
        expiry_hours: Lifetime (defaults to JWT_EXPIRY_HOURS)

    Returns:
        Signed JWT string
    """
    now = datetime.now(UTC)
    hours = config.settings.JWT_EXPIRY_HOURS if expiry_hours is None else expiry_hours
    payload = {
        "sub": context.user_id,
        "name": context.display_label,
        "iat": now,
        "exp": now + timedelta(hours=hours),
    }
    return jwt.encode(payload, _secret(secret), algorithm=config.settings.JWT_ALGORITHM)


def decode_session_token(token: str, *, secret: str | None = None) -> AuthContext:
    """
    Verify a session token and return who it identifies.

    Raises:
        ValidationError: If the token is invalid, expired, or has no subject
    """
    try:
        payload = jwt.decode(token, _secret(secret), algorithms=[config.settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise ValidationError("Session expired, sign in again") from e
    except jwt.InvalidTokenError as e:
        raise ValidationError("Invalid session") from e

    user_id = payload.get("sub")
    if not user_id:
        raise ValidationError("Invalid session")
    return AuthContext(user_id=user_id, display_label=payload.get("name") or config.settings.ANONYMOUS_LABEL)


def context_from_token(token: str | None, *, secret: str | None = None) -> AuthContext | None:
    """Signed-out (None) for a missing or bad token, like an expired cookie."""
    if not token:
        return None
    try:
        return decode_session_token(token, secret=secret)
    except ValidationError:
        return None


class TokenAuthProvider:
    """AuthProvider backed by a session token. Signing out yields a new, empty provider."""

    def __init__(self, token: str | None = None, *, secret: str | None = None) -> None:
        self._context = context_from_token(token, secret=secret)

    def current_user(self) -> AuthContext | None:
        return self._context

    def sign_out(self) -> TokenAuthProvider:
        return TokenAuthProvider(None)
