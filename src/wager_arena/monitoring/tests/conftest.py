"""
Monitoring layer test fixtures.

Tests health checks and alerting.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from wager_arena.core.rules import RoundRules
from wager_arena.ledger import LedgerHealth
from wager_arena.monitoring import AlertManager, HealthChecker
from wager_arena.storage import InMemoryRoundStore, Round, RoundPhase


@pytest.fixture
def now():
    return datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryRoundStore()


@pytest.fixture
def rules():
    return RoundRules()


# =============================================================================
# Mock Component Fixtures
# =============================================================================


@pytest.fixture
def mock_ledger():
    """Ledger gateway that answers its health check quickly."""
    ledger = MagicMock()
    ledger.health_check = AsyncMock(return_value=LedgerHealth(healthy=True, latency_ms=12.0))
    return ledger


@pytest.fixture
def health_checker(store, rules, mock_ledger):
    return HealthChecker(store, rules, ledger=mock_ledger)


@pytest.fixture
def make_active_round(store):
    """Save a round and point the active pointer at it."""

    async def _make(phase_started_at, phase=RoundPhase.WAITING, **kwargs):
        round_ = Round(
            round_id=1,
            phase=phase,
            created_at=phase_started_at,
            phase_started_at=phase_started_at,
            **kwargs,
        )
        await store.save_round(round_)
        pointer = await store.get_active_pointer()
        pointer.round_id = 1
        pointer.next_round_id = 2
        await store.save_active_pointer(pointer)
        return round_

    return _make


# =============================================================================
# Alerting Fixtures
# =============================================================================


@pytest.fixture
def mock_telegram_api():
    """Mock Telegram API client."""
    api = MagicMock()
    api.send_message = MagicMock(return_value={"ok": True})
    return api


@pytest.fixture
def alert_manager(mock_telegram_api):
    """AlertManager with mocked Telegram."""
    return AlertManager(
        telegram_bot_token="test_token",
        telegram_chat_id="test_chat",
        _telegram_api=mock_telegram_api,
    )
