"""
Ledger-facing repositories.

Handles:
- ledger_transactions: deposit/withdrawal queue
- bettor_balances: off-chain balances the queue moves value through
- processed_events: dedupe keys for external ledger events
"""
from __future__ import annotations

from typing import Optional

from wager_arena.storage.models import (
    BettorBalance,
    LedgerTransaction,
    ProcessedEvent,
    TransactionStatus,
)
from wager_arena.storage.repositories.base import BaseRepository


class LedgerTransactionRepository(BaseRepository[LedgerTransaction]):
    """Repository for the deposit/withdrawal queue."""

    table_name = "ledger_transactions"
    model_class = LedgerTransaction
    key_columns = ("tx_id",)

    async def list_queue(
        self,
        status: Optional[TransactionStatus] = None,
        bettor: Optional[str] = None,
        limit: int = 100,
        compensated: Optional[bool] = None,
    ) -> list[LedgerTransaction]:
        """Highest priority first, oldest first within a priority."""
        query = """
            SELECT * FROM ledger_transactions
            WHERE NOT archived
              AND ($1::text IS NULL OR status = $1)
              AND ($2::text IS NULL OR bettor = $2)
              AND ($4::boolean IS NULL OR compensated = $4)
            ORDER BY priority DESC, queued_at ASC
            LIMIT $3
        """
        records = await self.db.fetch(
            query, status.value if status else None, bettor, limit, compensated
        )
        return self._records_to_models(records)


class BettorBalanceRepository(BaseRepository[BettorBalance]):
    """Repository for bettor balances."""

    table_name = "bettor_balances"
    model_class = BettorBalance
    key_columns = ("bettor",)

    async def get(self, bettor: str) -> BettorBalance:
        return await self.get_by_key(bettor) or BettorBalance(bettor=bettor)


class ProcessedEventRepository(BaseRepository[ProcessedEvent]):
    """Repository for applied external event ids."""

    table_name = "processed_events"
    model_class = ProcessedEvent
    key_columns = ("event_id",)

    async def exists(self, event_id: str) -> bool:
        query = "SELECT 1 FROM processed_events WHERE event_id = $1"
        return await self.db.fetchval(query, event_id) is not None
