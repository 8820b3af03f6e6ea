"""
RoundStore protocol - the persistence seam for the arena core.

The core, crank and execution layers only talk to this interface. Two
implementations ship: PostgresRoundStore (production, asyncpg) and
InMemoryRoundStore (tests, local runs).

Write ordering: every transition persists child records (participants,
stakes, payouts, seeds) before the Round itself, so the Round row is the
commit point and a retried tick re-derives anything that was lost.
"""
from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from wager_arena.storage.models import (
    ActiveRoundPointer,
    BettorBalance,
    LedgerTransaction,
    Participant,
    Payout,
    PhaseTag,
    ProcessedEvent,
    RandomnessRequest,
    Round,
    RoundPhase,
    SpectatorStake,
    SystemHealthRecord,
    TransactionStatus,
)


@runtime_checkable
class RoundStore(Protocol):
    """Async persistence for rounds and everything hanging off them."""

    # Active round pointer
    async def get_active_pointer(self) -> ActiveRoundPointer: ...

    async def save_active_pointer(self, pointer: ActiveRoundPointer) -> None: ...

    # Rounds
    async def get_round(self, round_id: int) -> Optional[Round]: ...

    async def save_round(self, round_: Round) -> Round: ...

    async def list_rounds(
        self,
        phases: Optional[Sequence[RoundPhase]] = None,
        include_archived: bool = False,
        limit: int = 100,
    ) -> list[Round]: ...

    async def purge_round(self, round_id: int) -> int: ...

    # Participants & spectator stakes
    async def get_participants(self, round_id: int) -> list[Participant]: ...

    async def save_participant(self, participant: Participant) -> None: ...

    async def get_spectator_stakes(self, round_id: int) -> list[SpectatorStake]: ...

    async def save_spectator_stake(self, stake: SpectatorStake) -> None: ...

    # Randomness
    async def get_randomness_request(
        self, round_id: int, phase_tag: PhaseTag
    ) -> Optional[RandomnessRequest]: ...

    async def insert_randomness_request(self, request: RandomnessRequest) -> bool: ...

    async def save_randomness_request(self, request: RandomnessRequest) -> None: ...

    # Payouts
    async def get_payouts(
        self, round_id: int, bettor: Optional[str] = None
    ) -> list[Payout]: ...

    async def save_payout(self, payout: Payout) -> None: ...

    # External event dedupe
    async def is_event_processed(self, event_id: str) -> bool: ...

    async def mark_event_processed(self, event: ProcessedEvent) -> bool: ...

    # Balances & transaction queue
    async def get_balance(self, bettor: str) -> BettorBalance: ...

    async def save_balance(self, balance: BettorBalance) -> None: ...

    async def get_transaction(self, tx_id: str) -> Optional[LedgerTransaction]: ...

    async def save_transaction(self, tx: LedgerTransaction) -> None: ...

    async def list_transactions(
        self,
        status: Optional[TransactionStatus] = None,
        bettor: Optional[str] = None,
        limit: int = 100,
        compensated: Optional[bool] = None,
    ) -> list[LedgerTransaction]: ...

    # Health
    async def get_health_record(self, component: str) -> Optional[SystemHealthRecord]: ...

    async def save_health_record(self, record: SystemHealthRecord) -> None: ...

    async def list_health_records(self) -> list[SystemHealthRecord]: ...
