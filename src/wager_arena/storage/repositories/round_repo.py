"""
Round repository.

Handles:
- rounds: one row per round, the commit point of every transition
- active_round: single-row pointer to the round in play
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from wager_arena.storage.models import ActiveRoundPointer, Round, RoundPhase
from wager_arena.storage.repositories.base import BaseRepository, _rowcount


class RoundRepository(BaseRepository[Round]):
    """Repository for rounds."""

    table_name = "rounds"
    model_class = Round
    key_columns = ("round_id",)

    async def get(self, round_id: int) -> Optional[Round]:
        return await self.get_by_key(round_id)

    async def save(self, round_: Round) -> Round:
        """Upsert the round, stamping ``updated_at``."""
        round_.updated_at = datetime.now(timezone.utc)
        await self.upsert(round_)
        return round_

    async def list_recent(
        self,
        phases: Optional[Sequence[RoundPhase]] = None,
        include_archived: bool = False,
        limit: int = 100,
    ) -> list[Round]:
        """Newest rounds first, optionally filtered by phase."""
        query = """
            SELECT * FROM rounds
            WHERE ($1::text[] IS NULL OR phase = ANY($1::text[]))
              AND ($2 OR NOT archived)
            ORDER BY round_id DESC
            LIMIT $3
        """
        phase_values = self._values(phases) if phases is not None else None
        records = await self.db.fetch(query, phase_values, include_archived, limit)
        return self._records_to_models(records)

    async def purge(self, round_id: int) -> int:
        """Delete a round and its child rows. Returns rows removed."""
        removed = 0
        async with self.db.transaction() as conn:
            for table in ("payouts", "randomness_requests", "spectator_stakes", "participants", "rounds"):
                status = await conn.execute(f"DELETE FROM {table} WHERE round_id = $1", round_id)
                removed += _rowcount(status)
        return removed


class ActiveRoundRepository(BaseRepository[ActiveRoundPointer]):
    """Repository for the single active-round pointer row."""

    table_name = "active_round"
    model_class = ActiveRoundPointer

    async def get(self) -> ActiveRoundPointer:
        record = await self.db.fetchrow(
            "SELECT round_id, next_round_id, updated_at FROM active_round WHERE id = 1"
        )
        return self._record_to_model(record) or ActiveRoundPointer()

    async def save(self, pointer: ActiveRoundPointer) -> None:
        query = """
            INSERT INTO active_round (id, round_id, next_round_id, updated_at)
            VALUES (1, $1, $2, $3)
            ON CONFLICT (id) DO UPDATE SET
                round_id = EXCLUDED.round_id,
                next_round_id = EXCLUDED.next_round_id,
                updated_at = EXCLUDED.updated_at
        """
        await self.db.execute(
            query,
            pointer.round_id,
            pointer.next_round_id,
            datetime.now(timezone.utc),
        )
