"""
Pytest configuration and fixtures for the Quorum sync core tests.
"""

from __future__ import annotations

import os

import pytest
import pytest_asyncio

# Set test environment variables before importing config
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only")

from quorum.models.auth import AuthContext  # noqa: E402
from quorum.services.live_query import LiveQueryManager  # noqa: E402
from quorum.store.memory import MemoryStore  # noqa: E402


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest_asyncio.fixture
async def queries(store):
    """Live query manager over the memory store, released after the test."""
    manager = LiveQueryManager(store)
    yield manager
    manager.close()


@pytest.fixture
def u1() -> AuthContext:
    return AuthContext(user_id="u1", display_label="u1@example.com")


@pytest.fixture
def u2() -> AuthContext:
    return AuthContext(user_id="u2", display_label="u2@example.com")
