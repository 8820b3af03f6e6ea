"""
Base repository class for async PostgreSQL access.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel

from wager_arena.storage.database import Database

T = TypeVar("T", bound=BaseModel)


def _rowcount(status: str) -> int:
    """Parse the row count out of an asyncpg command tag ("DELETE 3")."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class BaseRepository(Generic[T]):
    """
    Base class for async repositories.

    Subclasses define the table name, model type and primary key columns.
    Model field names are the column names, so inserts and upserts are
    generated from ``model_dump()``.
    """

    table_name: str
    model_class: Type[T]
    key_columns: tuple[str, ...] = ("id",)

    def __init__(self, db: Database) -> None:
        self.db = db

    def _record_to_model(self, record) -> Optional[T]:
        """Convert asyncpg Record to Pydantic model."""
        if record is None:
            return None
        return self.model_class(**dict(record))

    def _records_to_models(self, records) -> list[T]:
        """Convert list of Records to list of models."""
        return [self._record_to_model(r) for r in records]

    def _column_values(self, model: T) -> dict[str, Any]:
        """Model fields as column values; enums are stored as their text value."""
        return {
            k: (v.value if isinstance(v, Enum) else v)
            for k, v in model.model_dump().items()
        }

    async def upsert(self, model: T) -> None:
        """Insert a row, or overwrite every non-key column if it exists."""
        data = self._column_values(model)
        columns = list(data)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        updates = ", ".join(
            f"{c} = EXCLUDED.{c}" for c in columns if c not in self.key_columns
        )
        query = (
            f"INSERT INTO {self.table_name} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) "
            f"ON CONFLICT ({', '.join(self.key_columns)}) DO UPDATE SET {updates}"
        )
        await self.db.execute(query, *data.values())

    async def insert_if_absent(self, model: T) -> bool:
        """Insert a row unless its key exists. Returns True if inserted."""
        data = self._column_values(model)
        columns = list(data)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        query = (
            f"INSERT INTO {self.table_name} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) "
            f"ON CONFLICT ({', '.join(self.key_columns)}) DO NOTHING "
            f"RETURNING 1"
        )
        return await self.db.fetchval(query, *data.values()) is not None

    async def get_by_key(self, *key_values) -> Optional[T]:
        """Get a single record by its primary key."""
        where = " AND ".join(
            f"{c} = ${i}" for i, c in enumerate(self.key_columns, start=1)
        )
        query = f"SELECT * FROM {self.table_name} WHERE {where}"
        record = await self.db.fetchrow(query, *key_values)
        return self._record_to_model(record)

    @staticmethod
    def _values(items: Sequence[Enum]) -> list[str]:
        return [i.value for i in items]
