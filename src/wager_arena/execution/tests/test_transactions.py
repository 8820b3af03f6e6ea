"""Tests for the deposit/withdrawal queue."""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from wager_arena.execution import InsufficientBalance
from wager_arena.ledger import GatewayError, TransferResult
from wager_arena.storage import BettorBalance, LedgerTransaction, TransactionKind, TransactionStatus


async def fund(store, bettor, amount):
    await store.save_balance(BettorBalance(bettor=bettor, available=amount))


class TestQueueing:
    @pytest.mark.asyncio
    async def test_withdrawal_reserves_funds(self, queue, store, now):
        await fund(store, "alice", 100)

        tx = await queue.queue_withdrawal("alice", 60, now)

        balance = await store.get_balance("alice")
        assert (balance.available, balance.pending) == (40, 60)
        assert tx.status is TransactionStatus.QUEUED
        assert tx.kind is TransactionKind.WITHDRAWAL

    @pytest.mark.asyncio
    async def test_withdrawal_over_balance_rejected(self, queue, store, now):
        await fund(store, "alice", 10)

        with pytest.raises(InsufficientBalance) as exc_info:
            await queue.queue_withdrawal("alice", 11, now)

        assert exc_info.value.available == 10
        assert (await store.get_balance("alice")).available == 10

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, queue, now):
        with pytest.raises(ValueError):
            await queue.queue_deposit("alice", 0, now)


class TestProcessing:
    @pytest.mark.asyncio
    async def test_deposit_credits_on_completion(self, queue, store, now):
        tx = await queue.queue_deposit("bob", 75, now)
        assert (await store.get_balance("bob")).available == 0

        stats = await queue.process_batch(now)

        assert (stats.processed, stats.completed) == (1, 1)
        assert (await store.get_balance("bob")).available == 75
        stored = await store.get_transaction(tx.tx_id)
        assert stored.status is TransactionStatus.COMPLETED
        assert stored.external_ref == "ref"

    @pytest.mark.asyncio
    async def test_completed_withdrawal_releases_reservation(self, queue, store, now):
        await fund(store, "alice", 100)
        await queue.queue_withdrawal("alice", 60, now)

        await queue.process_batch(now)

        balance = await store.get_balance("alice")
        assert (balance.available, balance.pending) == (40, 0)

    @pytest.mark.asyncio
    async def test_failed_withdrawal_compensated(self, queue, store, transfer, now):
        await fund(store, "alice", 100)
        tx = await queue.queue_withdrawal("alice", 60, now)
        transfer.transfer = AsyncMock(return_value=TransferResult(success=False, error="rejected"))

        stats = await queue.process_batch(now)

        assert (stats.failed, stats.compensated) == (1, 1)
        balance = await store.get_balance("alice")
        assert (balance.available, balance.pending) == (100, 0)
        stored = await store.get_transaction(tx.tx_id)
        assert stored.status is TransactionStatus.FAILED
        assert stored.compensated

    @pytest.mark.asyncio
    async def test_backlog_of_compensated_failures_does_not_hide_new_ones(self, queue, store, now):
        for i in range(1000):
            await store.save_transaction(LedgerTransaction(
                tx_id=f"old-{i}", bettor="old", kind=TransactionKind.WITHDRAWAL, amount=1,
                priority=9, status=TransactionStatus.FAILED, compensated=True,
                queued_at=now - timedelta(days=1), processed_at=now - timedelta(days=1),
            ))
        await fund(store, "alice", 100)
        tx = await queue.queue_withdrawal("alice", 60, now)
        tx.status = TransactionStatus.FAILED
        await store.save_transaction(tx)

        assert await queue.compensate_failed(now) == 1
        assert (await store.get_balance("alice")).available == 100

    @pytest.mark.asyncio
    async def test_failed_deposit_needs_no_compensation(self, queue, store, transfer, now):
        await queue.queue_deposit("bob", 75, now)
        transfer.transfer = AsyncMock(side_effect=GatewayError("down"))

        stats = await queue.process_batch(now)

        assert (stats.failed, stats.compensated) == (1, 0)
        assert (await store.get_balance("bob")).available == 0

    @pytest.mark.asyncio
    async def test_priority_then_age(self, queue, store, transfer, now):
        await queue.queue_deposit("low", 1, now)
        await queue.queue_deposit("late", 1, now + timedelta(seconds=5), priority=5)
        await queue.queue_deposit("early", 1, now + timedelta(seconds=1), priority=5)

        await queue.process_batch(now + timedelta(seconds=10))

        order = [call.args[0].bettor for call in transfer.transfer.await_args_list]
        assert order == ["early", "late", "low"]

    @pytest.mark.asyncio
    async def test_requeue_processing(self, queue, store, now):
        tx = await queue.queue_deposit("bob", 5, now)
        tx.status = TransactionStatus.PROCESSING
        await store.save_transaction(tx)

        assert await queue.requeue_processing() == 1
        assert (await store.get_transaction(tx.tx_id)).status is TransactionStatus.QUEUED


class TestArchive:
    @pytest.mark.asyncio
    async def test_archive_settled_after_retention(self, queue, store, now):
        tx = await queue.queue_deposit("bob", 5, now)
        await queue.process_batch(now)

        assert await queue.archive_settled(now + timedelta(days=1), timedelta(days=7)) == 0
        assert await queue.archive_settled(now + timedelta(days=8), timedelta(days=7)) == 1
        assert (await store.get_transaction(tx.tx_id)).archived
