"""
Execution test fixtures.

The transfer gateway is an AsyncMock returning TransferResult values, so
tests decide per call whether value actually moved.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from wager_arena.execution import PayoutExecutor, TransactionQueue
from wager_arena.ledger import TransferResult
from wager_arena.storage import (
    InMemoryRoundStore,
    Payout,
    PoolKind,
    Round,
    RoundPhase,
    SettlementStatus,
)


@pytest.fixture
def now():
    return datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryRoundStore()


@pytest.fixture
def transfer():
    mock = AsyncMock()
    mock.transfer = AsyncMock(return_value=TransferResult(success=True, reference="ref"))
    return mock


@pytest.fixture
def on_failure():
    return MagicMock()


@pytest.fixture
def executor(store, transfer, on_failure):
    return PayoutExecutor(store, transfer, on_failure=on_failure)


@pytest.fixture
def queue(store, transfer):
    return TransactionQueue(store, transfer, batch_size=10)


@pytest_asyncio.fixture
async def settled_round(store, now):
    """Round 1 settled: alice won 95 from the entry pool, carol 40 as a spectator."""
    round_ = Round(
        round_id=1,
        phase=RoundPhase.RESOLVING,
        created_at=now,
        phase_started_at=now,
        entry_pool_total=100,
        winner="alice",
        settlement_status=SettlementStatus.COMPUTED,
    )
    await store.save_round(round_)
    await store.save_payout(Payout(round_id=1, bettor="alice", pool=PoolKind.ENTRY, stake_ref="alice", amount=95))
    await store.save_payout(Payout(round_id=1, bettor="carol", pool=PoolKind.SPECTATOR, stake_ref="s-1", amount=40))
    return round_
