"""
Storage layer test fixtures.

The in-memory store is exercised directly. Repository SQL is checked
against a mocked Database; nothing here needs a running PostgreSQL.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from wager_arena.storage import InMemoryRoundStore, Round


@pytest.fixture
def now():
    return datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryRoundStore()


@pytest.fixture
def make_round(now):
    def _make(round_id=1, **kwargs):
        return Round(round_id=round_id, created_at=now, phase_started_at=now, **kwargs)
    return _make


@pytest.fixture
def mock_db():
    """Mock Database for repository tests."""
    db = AsyncMock()
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)

    # transaction() is an async context manager yielding a connection
    conn = AsyncMock()
    conn.execute = AsyncMock(return_value="DELETE 2")
    tx = MagicMock()
    tx.__aenter__ = AsyncMock(return_value=conn)
    tx.__aexit__ = AsyncMock(return_value=None)
    db.transaction = MagicMock(return_value=tx)
    db._conn = conn
    return db
