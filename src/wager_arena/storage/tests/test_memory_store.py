"""
Tests for the in-memory RoundStore.

It backs every unit test, so it has to behave like the database: copies on
read and write, insert-if-absent for randomness and event claims, and the
same queue ordering.
"""
from datetime import timedelta

import pytest

from wager_arena.storage import (
    LedgerTransaction,
    Participant,
    Payout,
    PhaseTag,
    PoolKind,
    ProcessedEvent,
    RandomnessRequest,
    RoundPhase,
    RoundStore,
    TransactionKind,
    TransactionStatus,
)


class TestRounds:
    @pytest.mark.asyncio
    async def test_implements_protocol(self, store):
        assert isinstance(store, RoundStore)

    @pytest.mark.asyncio
    async def test_returned_models_are_copies(self, store, make_round):
        await store.save_round(make_round())

        loaded = await store.get_round(1)
        loaded.phase = RoundPhase.FINISHED

        assert (await store.get_round(1)).phase is RoundPhase.IDLE

    @pytest.mark.asyncio
    async def test_list_rounds_filters_and_orders(self, store, make_round):
        await store.save_round(make_round(1, phase=RoundPhase.FINISHED, archived=True))
        await store.save_round(make_round(2, phase=RoundPhase.FINISHED))
        await store.save_round(make_round(3, phase=RoundPhase.WAITING))

        finished = await store.list_rounds(phases=[RoundPhase.FINISHED])
        everything = await store.list_rounds(include_archived=True)

        assert [r.round_id for r in finished] == [2]
        assert [r.round_id for r in everything] == [3, 2, 1]

    @pytest.mark.asyncio
    async def test_purge_removes_children(self, store, make_round, now):
        await store.save_round(make_round(1))
        await store.save_round(make_round(2))
        await store.save_participant(Participant(round_id=1, bettor="a", stake=5, joined_at=now))
        await store.save_participant(Participant(round_id=2, bettor="a", stake=5, joined_at=now))
        await store.save_payout(
            Payout(round_id=1, bettor="a", pool=PoolKind.ENTRY, stake_ref="a", amount=5)
        )

        removed = await store.purge_round(1)

        assert removed == 3
        assert await store.get_round(1) is None
        assert await store.get_participants(2)


class TestInsertIfAbsent:
    @pytest.mark.asyncio
    async def test_randomness_request_inserted_once(self, store, now):
        request = RandomnessRequest(
            round_id=1, phase_tag=PhaseTag.WINNER, oracle_request_id="r1", requested_at=now
        )

        assert await store.insert_randomness_request(request)
        assert not await store.insert_randomness_request(request.model_copy(update={"oracle_request_id": "r2"}))
        assert (await store.get_randomness_request(1, PhaseTag.WINNER)).oracle_request_id == "r1"

    @pytest.mark.asyncio
    async def test_event_claimed_once(self, store, now):
        event = ProcessedEvent(event_id="e1", round_id=1, kind="BetPlaced", processed_at=now)

        assert await store.mark_event_processed(event)
        assert not await store.mark_event_processed(event)
        assert await store.is_event_processed("e1")


class TestTransactions:
    @pytest.mark.asyncio
    async def test_queue_order_priority_then_age(self, store, now):
        for tx_id, priority, offset in (("old", 1, 0), ("urgent", 5, 10), ("new", 1, 5)):
            await store.save_transaction(
                LedgerTransaction(
                    tx_id=tx_id,
                    bettor="a",
                    kind=TransactionKind.DEPOSIT,
                    amount=1,
                    priority=priority,
                    queued_at=now + timedelta(seconds=offset),
                )
            )

        queued = await store.list_transactions(status=TransactionStatus.QUEUED)

        assert [t.tx_id for t in queued] == ["urgent", "old", "new"]

    @pytest.mark.asyncio
    async def test_unknown_balance_is_empty(self, store):
        balance = await store.get_balance("nobody")
        assert (balance.available, balance.pending) == (0, 0)
