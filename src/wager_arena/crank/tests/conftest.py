"""
Crank test fixtures.

The ledger, oracle and transfer gateway are mocks; everything else (state
machine, broker, payout executor) is real and runs on the in-memory store.
By default the oracle fulfils immediately and every ledger transaction
confirms on the first poll.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from wager_arena.core import RoundRules, RoundStateMachine
from wager_arena.crank import CrankConfig, ReconciliationCrank
from wager_arena.execution import PayoutExecutor
from wager_arena.ledger import LedgerHealth, RoundSnapshot, TransferResult
from wager_arena.randomness import RandomnessBroker
from wager_arena.storage import InMemoryRoundStore

SEED = bytes.fromhex("5eed" * 16)


@pytest.fixture
def now():
    return datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def rules():
    return RoundRules(min_stake=1, large_game_threshold=4, finalist_count=2)


@pytest.fixture
def store():
    return InMemoryRoundStore()


@pytest.fixture
def machine(store, rules):
    return RoundStateMachine(store, rules)


@pytest.fixture
def oracle():
    mock = MagicMock()
    mock.request = AsyncMock(side_effect=["req-1", "req-2"])
    mock.poll = AsyncMock(return_value=SEED)
    return mock


@pytest.fixture
def ledger():
    mock = MagicMock()
    mock.get_round_snapshot = AsyncMock(return_value=RoundSnapshot(round_id=None))
    mock.submit_close_betting = AsyncMock(return_value="tx-close")
    mock.submit_winner = AsyncMock(return_value="tx-winner")
    mock.await_confirmation = AsyncMock(return_value=True)
    mock.health_check = AsyncMock(return_value=LedgerHealth(healthy=True, latency_ms=5.0))
    return mock


@pytest.fixture
def transfer():
    mock = MagicMock()
    mock.transfer = AsyncMock(return_value=TransferResult(success=True, reference="ref"))
    return mock


@pytest.fixture
def queue():
    mock = MagicMock()
    mock.process_batch = AsyncMock()
    return mock


@pytest.fixture
def alerts():
    return MagicMock()


@pytest.fixture
def crank_config():
    return CrankConfig(max_submission_attempts=3)


@pytest.fixture
def crank(machine, store, oracle, ledger, transfer, queue, alerts, crank_config):
    return ReconciliationCrank(
        machine,
        RandomnessBroker(store, oracle),
        ledger,
        PayoutExecutor(store, transfer),
        queue=queue,
        alerts=alerts,
        config=crank_config,
    )


@pytest.fixture
def serve(ledger):
    """Make the ledger report ``events`` for a round from now on."""

    def _serve(*events, round_id=1):
        ledger.get_round_snapshot.return_value = RoundSnapshot(round_id=round_id, events=list(events))

    return _serve


@pytest.fixture
def bet():
    def _bet(event_id, bettor, amount, **extra):
        return {"id": event_id, "kind": "BetPlaced", "round_id": 1, "bettor": bettor, "amount": amount, **extra}

    return _bet
