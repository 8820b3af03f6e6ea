"""
Payout repository.

Settlement lines, one per (round, pool, stake). Status moves
pending -> paid, or pending -> claim_pending -> paid via a manual claim.
"""
from __future__ import annotations

from typing import Optional

from wager_arena.storage.models import Payout
from wager_arena.storage.repositories.base import BaseRepository


class PayoutRepository(BaseRepository[Payout]):
    """Repository for settlement payouts."""

    table_name = "payouts"
    model_class = Payout
    key_columns = ("round_id", "pool", "stake_ref")

    async def get_for_round(self, round_id: int, bettor: Optional[str] = None) -> list[Payout]:
        query = """
            SELECT * FROM payouts
            WHERE round_id = $1 AND ($2::text IS NULL OR bettor = $2)
            ORDER BY pool, stake_ref
        """
        records = await self.db.fetch(query, round_id, bettor)
        return self._records_to_models(records)
