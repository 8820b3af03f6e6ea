"""
Tests for the randomness broker.

Seeds are requested once per (round, phase), stored when the oracle
fulfils them, and handed out exactly once.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from wager_arena.core.errors import (
    DuplicateRandomnessRequest,
    SeedAlreadyConsumed,
    SeedNotFulfilled,
)
from wager_arena.storage import PhaseTag

SEED = bytes.fromhex("c0ffee" * 8)


class TestRequest:
    @pytest.mark.asyncio
    async def test_request_persisted(self, broker, store, oracle, now):
        request = await broker.request(1, PhaseTag.ELIMINATION, now)

        oracle.request.assert_awaited_once_with(1, PhaseTag.ELIMINATION)
        stored = await store.get_randomness_request(1, PhaseTag.ELIMINATION)
        assert stored.oracle_request_id == request.oracle_request_id == "req-1"
        assert not stored.fulfilled

    @pytest.mark.asyncio
    async def test_duplicate_request_rejected(self, broker, oracle, now):
        await broker.request(1, PhaseTag.WINNER, now)

        with pytest.raises(DuplicateRandomnessRequest):
            await broker.request(1, PhaseTag.WINNER, now)
        assert oracle.request.await_count == 1

    @pytest.mark.asyncio
    async def test_phases_are_independent(self, broker, now):
        await broker.request(1, PhaseTag.ELIMINATION, now)
        await broker.request(1, PhaseTag.WINNER, now)

        assert await broker.get(1, PhaseTag.WINNER) is not None


class TestFulfillment:
    @pytest.mark.asyncio
    async def test_poll_without_request_rejected(self, broker, now):
        with pytest.raises(SeedNotFulfilled):
            await broker.poll_fulfillment(1, PhaseTag.WINNER, now)

    @pytest.mark.asyncio
    async def test_poll_until_fulfilled(self, broker, oracle, store, now):
        await broker.request(1, PhaseTag.WINNER, now)

        assert not await broker.poll_fulfillment(1, PhaseTag.WINNER, now)

        oracle.poll = AsyncMock(return_value=SEED)
        later = now + timedelta(seconds=30)
        assert await broker.poll_fulfillment(1, PhaseTag.WINNER, later)

        stored = await store.get_randomness_request(1, PhaseTag.WINNER)
        assert stored.fulfilled and stored.seed == SEED and stored.fulfilled_at == later

    @pytest.mark.asyncio
    async def test_fulfilled_request_not_polled_again(self, broker, oracle, now):
        oracle.poll = AsyncMock(return_value=SEED)
        await broker.request(1, PhaseTag.WINNER, now)
        await broker.poll_fulfillment(1, PhaseTag.WINNER, now)

        assert await broker.poll_fulfillment(1, PhaseTag.WINNER, now)
        assert oracle.poll.await_count == 1


class TestConsumption:
    @pytest.mark.asyncio
    async def test_unfulfilled_seed_cannot_be_consumed(self, broker, now):
        await broker.request(1, PhaseTag.WINNER, now)
        with pytest.raises(SeedNotFulfilled):
            await broker.consume_seed(1, PhaseTag.WINNER, now)

    @pytest.mark.asyncio
    async def test_seed_consumed_exactly_once(self, broker, oracle, store, now):
        oracle.poll = AsyncMock(return_value=SEED)
        await broker.request(1, PhaseTag.WINNER, now)
        await broker.poll_fulfillment(1, PhaseTag.WINNER, now)

        assert await broker.consume_seed(1, PhaseTag.WINNER, now) == SEED
        assert (await store.get_randomness_request(1, PhaseTag.WINNER)).consumed

        with pytest.raises(SeedAlreadyConsumed) as exc_info:
            await broker.consume_seed(1, PhaseTag.WINNER, now)
        assert exc_info.value.fatal
