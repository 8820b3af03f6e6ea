"""
System health repository.
"""
from __future__ import annotations

from typing import Optional

from wager_arena.storage.models import SystemHealthRecord
from wager_arena.storage.repositories.base import BaseRepository


class SystemHealthRepository(BaseRepository[SystemHealthRecord]):
    """Repository for per-component health rows."""

    table_name = "system_health"
    model_class = SystemHealthRecord
    key_columns = ("component",)

    async def get(self, component: str) -> Optional[SystemHealthRecord]:
        return await self.get_by_key(component)

    async def list_all(self) -> list[SystemHealthRecord]:
        records = await self.db.fetch("SELECT * FROM system_health ORDER BY component")
        return self._records_to_models(records)
