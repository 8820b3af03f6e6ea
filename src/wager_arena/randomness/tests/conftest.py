"""
Randomness test fixtures.

The oracle is always mocked; tests control when a seed "arrives".
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from wager_arena.randomness import RandomnessBroker
from wager_arena.storage import InMemoryRoundStore


@pytest.fixture
def now():
    return datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryRoundStore()


@pytest.fixture
def oracle():
    """Oracle that accepts requests but has not fulfilled anything yet."""
    mock = AsyncMock()
    mock.request = AsyncMock(return_value="req-1")
    mock.poll = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def broker(store, oracle):
    return RandomnessBroker(store, oracle)
