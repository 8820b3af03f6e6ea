"""
Randomness request repository.

One row per (round, phase tag). The primary key makes a second request
for the same round and tag impossible at the database level.
"""
from __future__ import annotations

from typing import Optional

from wager_arena.storage.models import PhaseTag, RandomnessRequest
from wager_arena.storage.repositories.base import BaseRepository


class RandomnessRequestRepository(BaseRepository[RandomnessRequest]):
    """Repository for round-scoped randomness requests."""

    table_name = "randomness_requests"
    model_class = RandomnessRequest
    key_columns = ("round_id", "phase_tag")

    async def get(self, round_id: int, phase_tag: PhaseTag) -> Optional[RandomnessRequest]:
        return await self.get_by_key(round_id, phase_tag.value)

    async def create(self, request: RandomnessRequest) -> bool:
        """Insert unless a request for this round and tag exists."""
        return await self.insert_if_absent(request)
