"""
Typed ledger events.

The external ledger reports what happened as loosely-typed dicts. They are
decoded at the boundary into one frozen dataclass per known kind; unknown
kinds and malformed payloads raise UnknownLedgerEvent / MalformedLedgerEvent
and are never passed through untyped.

Raw shape:
    {"id": "<unique event id>", "kind": "BetPlaced", "round_id": 7, ...}
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from wager_arena.core.errors import ArenaError


class UnknownLedgerEvent(ArenaError):
    def __init__(self, kind: Any, event_id: Optional[str] = None):
        self.kind = kind
        self.event_id = event_id
        super().__init__(f"Unknown ledger event kind {kind!r} (id={event_id})")


class MalformedLedgerEvent(ArenaError):
    def __init__(self, kind: str, event_id: Optional[str], reason: str):
        self.kind = kind
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"Malformed {kind} event (id={event_id}): {reason}")


@dataclass(frozen=True)
class GameInitialized:
    event_id: str
    round_id: int
    occurred_at: Optional[datetime] = None
    kind: str = "GameInitialized"


@dataclass(frozen=True)
class BetPlaced:
    event_id: str
    round_id: int
    bettor: str
    amount: int
    is_bot: bool = False
    occurred_at: Optional[datetime] = None
    kind: str = "BetPlaced"


@dataclass(frozen=True)
class GameLocked:
    event_id: str
    round_id: int
    occurred_at: Optional[datetime] = None
    kind: str = "GameLocked"


@dataclass(frozen=True)
class WinnerSelected:
    event_id: str
    round_id: int
    winner: str
    occurred_at: Optional[datetime] = None
    kind: str = "WinnerSelected"


@dataclass(frozen=True)
class GameReset:
    event_id: str
    round_id: int
    occurred_at: Optional[datetime] = None
    kind: str = "GameReset"


LedgerEvent = Union[GameInitialized, BetPlaced, GameLocked, WinnerSelected, GameReset]


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValueError(f"not a boolean: {value!r}")


def _bet_placed(event_id: str, round_id: int, at: Optional[datetime], raw: dict) -> BetPlaced:
    amount = int(raw["amount"])
    if amount <= 0:
        raise ValueError(f"non-positive amount {amount}")
    return BetPlaced(
        event_id=event_id,
        round_id=round_id,
        bettor=str(raw["bettor"]),
        amount=amount,
        is_bot=_flag(raw.get("is_bot", False)),
        occurred_at=at,
    )


_DECODERS: dict[str, Callable[[str, int, Optional[datetime], dict], LedgerEvent]] = {
    "GameInitialized": lambda i, r, at, raw: GameInitialized(i, r, at),
    "BetPlaced": _bet_placed,
    "GameLocked": lambda i, r, at, raw: GameLocked(i, r, at),
    "WinnerSelected": lambda i, r, at, raw: WinnerSelected(i, r, str(raw["winner"]), at),
    "GameReset": lambda i, r, at, raw: GameReset(i, r, at),
}


def decode_event(raw: dict[str, Any]) -> LedgerEvent:
    """Decode one raw event. Raises UnknownLedgerEvent or MalformedLedgerEvent."""
    kind = raw.get("kind")
    event_id = raw.get("id")
    decoder = _DECODERS.get(kind) if isinstance(kind, str) else None
    if decoder is None:
        raise UnknownLedgerEvent(kind, event_id)
    if not event_id:
        raise MalformedLedgerEvent(kind, None, "missing event id")
    try:
        return decoder(str(event_id), int(raw["round_id"]), _timestamp(raw.get("at")), raw)
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedLedgerEvent(kind, str(event_id), str(e)) from e
