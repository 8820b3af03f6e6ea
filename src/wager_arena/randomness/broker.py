"""
Randomness Broker - round-scoped seed requests with replay protection.

Lifecycle of a RandomnessRequest:

    request()          -> row created (at most one per round + phase tag)
    poll_fulfillment() -> seed stored, fulfilled=True
    consume_seed()     -> consumed=True persisted, THEN seed returned

A consumed seed is never returned again. The elimination and winner
requests are independent, so the elimination outcome reveals nothing about
the winner while spectators are betting.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from wager_arena.core.errors import (
    DuplicateRandomnessRequest,
    SeedAlreadyConsumed,
    SeedNotFulfilled,
)
from wager_arena.randomness.oracle import RandomnessOracle
from wager_arena.storage.models import PhaseTag, RandomnessRequest
from wager_arena.storage.protocol import RoundStore

logger = logging.getLogger(__name__)


class RandomnessBroker:
    """
    Brokers seeds between the oracle and the state machine.

    Usage:
        broker = RandomnessBroker(store, oracle)
        await broker.request(round_id, PhaseTag.WINNER, now)
        if await broker.poll_fulfillment(round_id, PhaseTag.WINNER, now):
            seed = await broker.consume_seed(round_id, PhaseTag.WINNER, now)
    """

    def __init__(self, store: RoundStore, oracle: RandomnessOracle) -> None:
        self.store = store
        self.oracle = oracle

    async def get(self, round_id: int, phase_tag: PhaseTag) -> Optional[RandomnessRequest]:
        return await self.store.get_randomness_request(round_id, phase_tag)

    async def request(self, round_id: int, phase_tag: PhaseTag, now: datetime) -> RandomnessRequest:
        """Request a seed. Raises DuplicateRandomnessRequest if one exists."""
        if await self.store.get_randomness_request(round_id, phase_tag) is not None:
            raise DuplicateRandomnessRequest(round_id, phase_tag.value)

        oracle_request_id = await self.oracle.request(round_id, phase_tag)
        request = RandomnessRequest(
            round_id=round_id,
            phase_tag=phase_tag,
            oracle_request_id=oracle_request_id,
            requested_at=now,
        )
        if not await self.store.insert_randomness_request(request):
            raise DuplicateRandomnessRequest(round_id, phase_tag.value)

        logger.info(f"Round {round_id}: {phase_tag.value} randomness requested ({oracle_request_id})")
        return request

    async def poll_fulfillment(self, round_id: int, phase_tag: PhaseTag, now: datetime) -> bool:
        """Check the oracle; store the seed once it arrives. True when fulfilled."""
        request = await self.store.get_randomness_request(round_id, phase_tag)
        if request is None:
            raise SeedNotFulfilled(round_id, phase_tag.value)
        if request.fulfilled:
            return True

        seed = await self.oracle.poll(request.oracle_request_id)
        if seed is None:
            return False

        request.seed = seed
        request.fulfilled = True
        request.fulfilled_at = now
        await self.store.save_randomness_request(request)
        logger.info(f"Round {round_id}: {phase_tag.value} seed fulfilled")
        return True

    async def consume_seed(self, round_id: int, phase_tag: PhaseTag, now: datetime) -> bytes:
        """
        Return the seed exactly once.

        Raises:
            SeedNotFulfilled: no request, or not yet fulfilled
            SeedAlreadyConsumed: the seed was already handed out
        """
        request = await self.store.get_randomness_request(round_id, phase_tag)
        if request is None or not request.fulfilled or request.seed is None:
            raise SeedNotFulfilled(round_id, phase_tag.value)
        if request.consumed:
            raise SeedAlreadyConsumed(round_id, phase_tag.value)

        seed = request.seed
        request.consumed = True
        request.consumed_at = now
        await self.store.save_randomness_request(request)
        logger.info(f"Round {round_id}: {phase_tag.value} seed consumed")
        return seed
