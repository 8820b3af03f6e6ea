"""
Transaction Queue - deposits and withdrawals through the transfer gateway.

    queued -> processing -> completed | failed

Withdrawals reserve funds when queued (available -> pending). A failed
withdrawal is compensated by moving the amount back to available before
the item can be archived. Deposits credit the balance only on completion.

Processing order: highest priority first, oldest first within a priority.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from wager_arena.core.errors import ArenaError
from wager_arena.ledger.client import GatewayError
from wager_arena.ledger.gateway import TransferGateway
from wager_arena.storage.models import (
    LedgerTransaction,
    TransactionKind,
    TransactionStatus,
)
from wager_arena.storage.protocol import RoundStore

logger = logging.getLogger(__name__)


class InsufficientBalance(ArenaError):
    """Raised when a withdrawal exceeds the bettor's available balance."""

    def __init__(self, bettor: str, required: int, available: int):
        self.bettor = bettor
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance for {bettor}: required {required}, available {available}"
        )


@dataclass
class QueueStats:
    processed: int = 0
    completed: int = 0
    failed: int = 0
    compensated: int = 0


class TransactionQueue:
    """
    Owns the deposit/withdrawal queue state machine.

    Usage:
        queue = TransactionQueue(store, transfer_gateway)
        await queue.queue_withdrawal("alice", 5_000_000, now)
        stats = await queue.process_batch(now)
    """

    def __init__(self, store: RoundStore, transfer: TransferGateway, batch_size: int = 20) -> None:
        self.store = store
        self.transfer = transfer
        self.batch_size = batch_size

    async def _queue(
        self, bettor: str, kind: TransactionKind, amount: int, now: datetime, priority: int
    ) -> LedgerTransaction:
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")
        tx = LedgerTransaction(
            tx_id=uuid.uuid4().hex,
            bettor=bettor,
            kind=kind,
            amount=amount,
            priority=priority,
            queued_at=now,
        )
        await self.store.save_transaction(tx)
        logger.info(f"Queued {kind.value} {tx.tx_id}: {amount} for {bettor} (priority {priority})")
        return tx

    async def queue_deposit(
        self, bettor: str, amount: int, now: datetime, priority: int = 1
    ) -> LedgerTransaction:
        return await self._queue(bettor, TransactionKind.DEPOSIT, amount, now, priority)

    async def queue_withdrawal(
        self, bettor: str, amount: int, now: datetime, priority: int = 1
    ) -> LedgerTransaction:
        """Reserve ``amount`` from the available balance and queue the withdrawal."""
        balance = await self.store.get_balance(bettor)
        if balance.available < amount:
            raise InsufficientBalance(bettor, amount, balance.available)
        balance.available -= amount
        balance.pending += amount
        balance.updated_at = now
        await self.store.save_balance(balance)
        return await self._queue(bettor, TransactionKind.WITHDRAWAL, amount, now, priority)

    async def process_batch(self, now: datetime, limit: Optional[int] = None) -> QueueStats:
        """Process up to ``limit`` queued items, then compensate any failures."""
        stats = QueueStats()
        batch = await self.store.list_transactions(
            status=TransactionStatus.QUEUED, limit=limit or self.batch_size
        )
        for tx in batch:
            await self._process(tx, now, stats)
        stats.compensated = await self.compensate_failed(now)
        if stats.processed:
            logger.info(
                f"Transaction batch: {stats.processed} processed, {stats.completed} completed, "
                f"{stats.failed} failed, {stats.compensated} compensated"
            )
        return stats

    async def _process(self, tx: LedgerTransaction, now: datetime, stats: QueueStats) -> None:
        tx.status = TransactionStatus.PROCESSING
        await self.store.save_transaction(tx)
        stats.processed += 1

        try:
            result = await self.transfer.transfer(tx)
            success, reference, error = result.success, result.reference, result.error
        except GatewayError as e:
            success, reference, error = False, None, str(e)

        tx.processed_at = now
        if success:
            tx.status = TransactionStatus.COMPLETED
            tx.external_ref = reference
            await self.store.save_transaction(tx)
            await self._apply_completion(tx, now)
            stats.completed += 1
        else:
            tx.status = TransactionStatus.FAILED
            tx.error = error or "transfer rejected"
            # Deposits never touched the balance; nothing to give back
            tx.compensated = tx.kind is not TransactionKind.WITHDRAWAL
            await self.store.save_transaction(tx)
            logger.warning(f"{tx.kind.value} {tx.tx_id} for {tx.bettor} failed: {tx.error}")
            stats.failed += 1

    async def _apply_completion(self, tx: LedgerTransaction, now: datetime) -> None:
        balance = await self.store.get_balance(tx.bettor)
        if tx.kind is TransactionKind.DEPOSIT:
            balance.available += tx.amount
        elif tx.kind is TransactionKind.WITHDRAWAL:
            balance.pending -= tx.amount
        balance.updated_at = now
        await self.store.save_balance(balance)

    async def compensate_failed(self, now: datetime) -> int:
        """Refund reserved funds of failed withdrawals. Returns items compensated."""
        count = 0
        pending = await self.store.list_transactions(
            status=TransactionStatus.FAILED, compensated=False, limit=1000
        )
        for tx in pending:
            balance = await self.store.get_balance(tx.bettor)
            balance.pending -= tx.amount
            balance.available += tx.amount
            balance.updated_at = now
            await self.store.save_balance(balance)
            tx.compensated = True
            await self.store.save_transaction(tx)
            logger.info(f"Compensated failed withdrawal {tx.tx_id}: {tx.amount} back to {tx.bettor}")
            count += 1
        return count

    async def requeue_processing(self) -> int:
        """Put items left in ``processing`` by a crash back on the queue."""
        stuck = await self.store.list_transactions(status=TransactionStatus.PROCESSING, limit=1000)
        for tx in stuck:
            tx.status = TransactionStatus.QUEUED
            await self.store.save_transaction(tx)
        if stuck:
            logger.warning(f"Requeued {len(stuck)} transactions left in processing")
        return len(stuck)

    async def archive_settled(self, now: datetime, retention: timedelta) -> int:
        """Archive completed and compensated-failed items older than ``retention``."""
        cutoff = now - retention
        archived = 0
        # Failed withdrawals are archived only once compensated
        for status, compensated in ((TransactionStatus.COMPLETED, None), (TransactionStatus.FAILED, True)):
            for tx in await self.store.list_transactions(status=status, compensated=compensated, limit=1000):
                if tx.processed_at is None or tx.processed_at > cutoff:
                    continue
                tx.archived = True
                await self.store.save_transaction(tx)
                archived += 1
        if archived:
            logger.info(f"Archived {archived} settled transactions")
        return archived
