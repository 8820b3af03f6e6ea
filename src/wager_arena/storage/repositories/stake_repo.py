"""
Stake repositories.

Handles:
- participants: entry-pool stakes, one row per bettor per round
- spectator_stakes: spectator-pool stakes on finalists
"""
from __future__ import annotations

from wager_arena.storage.models import Participant, SpectatorStake
from wager_arena.storage.repositories.base import BaseRepository


class ParticipantRepository(BaseRepository[Participant]):
    """Repository for round participants."""

    table_name = "participants"
    model_class = Participant
    key_columns = ("round_id", "bettor")

    async def get_for_round(self, round_id: int) -> list[Participant]:
        query = """
            SELECT * FROM participants
            WHERE round_id = $1
            ORDER BY joined_at, bettor
        """
        records = await self.db.fetch(query, round_id)
        return self._records_to_models(records)


class SpectatorStakeRepository(BaseRepository[SpectatorStake]):
    """Repository for spectator stakes."""

    table_name = "spectator_stakes"
    model_class = SpectatorStake
    key_columns = ("stake_id",)

    async def get_for_round(self, round_id: int) -> list[SpectatorStake]:
        query = """
            SELECT * FROM spectator_stakes
            WHERE round_id = $1
            ORDER BY placed_at, stake_id
        """
        records = await self.db.fetch(query, round_id)
        return self._records_to_models(records)
