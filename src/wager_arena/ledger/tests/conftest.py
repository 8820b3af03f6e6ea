"""Ledger test fixtures. HTTP transport is always mocked at ``_request``."""
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from wager_arena.ledger import HttpLedgerGateway, HttpTransferGateway
from wager_arena.storage import LedgerTransaction, TransactionKind


@pytest.fixture
def ledger():
    gateway = HttpLedgerGateway("http://ledger.test/")
    gateway._request = AsyncMock()
    return gateway


@pytest.fixture
def transfers():
    gateway = HttpTransferGateway("http://ledger.test")
    gateway._request = AsyncMock()
    return gateway


@pytest.fixture
def withdrawal():
    return LedgerTransaction(
        tx_id="tx-1",
        bettor="alice",
        kind=TransactionKind.WITHDRAWAL,
        amount=250,
        queued_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
