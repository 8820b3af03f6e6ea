"""
Pool Ledger - per-round stake accounting.

Tracks the entry pool (participants staking on themselves) and the
spectator pool (stakes on finalists), per bettor. Pure
accounting: no I/O, no clock. The state machine rebuilds a ledger from the
persisted stake records and compares it with the round's pool totals, so
``Σ stakes == pool totals`` is checked on every write.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable

from wager_arena.core.errors import InvariantViolation

if TYPE_CHECKING:
    from wager_arena.storage.models import Participant, Round, SpectatorStake


@dataclass
class PoolLedger:
    """Stake totals for one round."""

    round_id: int
    entry: Dict[str, int] = field(default_factory=dict)
    spectator: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_records(
        cls,
        round_id: int,
        participants: Iterable["Participant"],
        spectator_stakes: Iterable["SpectatorStake"] = (),
    ) -> "PoolLedger":
        ledger = cls(round_id=round_id)
        for p in participants:
            ledger.add_entry(p.bettor, p.stake)
        for s in spectator_stakes:
            ledger.add_spectator(s.bettor, s.amount)
        return ledger

    @property
    def entry_total(self) -> int:
        return sum(self.entry.values())

    @property
    def spectator_total(self) -> int:
        return sum(self.spectator.values())

    def _check_amount(self, amount: int) -> None:
        if amount <= 0:
            raise InvariantViolation(self.round_id, f"non-positive stake amount {amount}")

    def add_entry(self, bettor: str, amount: int) -> int:
        """Add an entry stake. Returns the bettor's new entry total."""
        self._check_amount(amount)
        self.entry[bettor] = self.entry.get(bettor, 0) + amount
        return self.entry[bettor]

    def add_spectator(self, bettor: str, amount: int) -> int:
        """Add a spectator stake. Returns the bettor's new spectator total."""
        self._check_amount(amount)
        self.spectator[bettor] = self.spectator.get(bettor, 0) + amount
        return self.spectator[bettor]

    def verify(self, round_: "Round") -> None:
        """Raise InvariantViolation if the round's totals disagree with the stakes."""
        if round_.entry_pool_total != self.entry_total:
            raise InvariantViolation(
                self.round_id,
                f"entry pool total {round_.entry_pool_total} != sum of stakes {self.entry_total}",
            )
        if round_.spectator_pool_total != self.spectator_total:
            raise InvariantViolation(
                self.round_id,
                f"spectator pool total {round_.spectator_pool_total} != sum of stakes {self.spectator_total}",
            )

