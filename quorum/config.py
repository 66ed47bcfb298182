"""
Quorum configuration - all environment variables in one place.

Read from environment at import time. Nothing here is required to import the
package; adapters that need a setting validate it when they are constructed.
"""

from __future__ import annotations

import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Application settings from environment variables."""

    # Application
    ENVIRONMENT: str = os.environ.get("QUORUM_ENVIRONMENT", "development")

    # Database (PostgresStore only)
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "")
    NOTIFY_CHANNEL: str = os.environ.get("QUORUM_NOTIFY_CHANNEL", "quorum_documents")

    # Session tokens
    JWT_SECRET: str = os.environ.get("JWT_SECRET", "")
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = 24

    # Store capabilities. The comments collection-group query needs a composite
    # index to be ordered; without one the store rejects the ordered query.
    ORDERED_COMMENT_QUERY: bool = _env_flag("QUORUM_ORDERED_COMMENT_QUERY", True)

    # Reducer failure policy: retain the last good items (default) or clear them
    CLEAR_ITEMS_ON_FAILURE: bool = _env_flag("QUORUM_CLEAR_ITEMS_ON_FAILURE", False)

    # Content
    TOPICS: tuple[str, ...] = ("Química", "Física", "Astronomía")
    UNKNOWN_POST_LABEL: str = "Unknown post"
    ANONYMOUS_LABEL: str = "Anonymous"
    TITLE_MAX_LENGTH: int = 200
    BODY_MAX_LENGTH: int = 10000
    COMMENT_MAX_LENGTH: int = 5000


# Singleton instance
settings = Settings()
