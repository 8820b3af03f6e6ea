"""
PostgreSQL-backed RoundStore.

Composes the per-table repositories behind the RoundStore protocol so the
core never sees SQL.
"""
from __future__ import annotations

from typing import Optional, Sequence

from wager_arena.storage.database import Database
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
from wager_arena.storage.repositories import (
    ActiveRoundRepository,
    BettorBalanceRepository,
    LedgerTransactionRepository,
    ParticipantRepository,
    PayoutRepository,
    ProcessedEventRepository,
    RandomnessRequestRepository,
    RoundRepository,
    SpectatorStakeRepository,
    SystemHealthRepository,
)


class PostgresRoundStore:
    """RoundStore on top of asyncpg repositories."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self.rounds = RoundRepository(db)
        self.pointer = ActiveRoundRepository(db)
        self.participants = ParticipantRepository(db)
        self.spectator_stakes = SpectatorStakeRepository(db)
        self.randomness = RandomnessRequestRepository(db)
        self.payouts = PayoutRepository(db)
        self.events = ProcessedEventRepository(db)
        self.balances = BettorBalanceRepository(db)
        self.transactions = LedgerTransactionRepository(db)
        self.health = SystemHealthRepository(db)

    async def get_active_pointer(self) -> ActiveRoundPointer:
        return await self.pointer.get()

    async def save_active_pointer(self, pointer: ActiveRoundPointer) -> None:
        await self.pointer.save(pointer)

    async def get_round(self, round_id: int) -> Optional[Round]:
        return await self.rounds.get(round_id)

    async def save_round(self, round_: Round) -> Round:
        return await self.rounds.save(round_)

    async def list_rounds(
        self,
        phases: Optional[Sequence[RoundPhase]] = None,
        include_archived: bool = False,
        limit: int = 100,
    ) -> list[Round]:
        return await self.rounds.list_recent(phases, include_archived, limit)

    async def purge_round(self, round_id: int) -> int:
        return await self.rounds.purge(round_id)

    async def get_participants(self, round_id: int) -> list[Participant]:
        return await self.participants.get_for_round(round_id)

    async def save_participant(self, participant: Participant) -> None:
        await self.participants.upsert(participant)

    async def get_spectator_stakes(self, round_id: int) -> list[SpectatorStake]:
        return await self.spectator_stakes.get_for_round(round_id)

    async def save_spectator_stake(self, stake: SpectatorStake) -> None:
        await self.spectator_stakes.upsert(stake)

    async def get_randomness_request(
        self, round_id: int, phase_tag: PhaseTag
    ) -> Optional[RandomnessRequest]:
        return await self.randomness.get(round_id, phase_tag)

    async def insert_randomness_request(self, request: RandomnessRequest) -> bool:
        return await self.randomness.create(request)

    async def save_randomness_request(self, request: RandomnessRequest) -> None:
        await self.randomness.upsert(request)

    async def get_payouts(self, round_id: int, bettor: Optional[str] = None) -> list[Payout]:
        return await self.payouts.get_for_round(round_id, bettor)

    async def save_payout(self, payout: Payout) -> None:
        await self.payouts.upsert(payout)

    async def is_event_processed(self, event_id: str) -> bool:
        return await self.events.exists(event_id)

    async def mark_event_processed(self, event: ProcessedEvent) -> bool:
        return await self.events.insert_if_absent(event)

    async def get_balance(self, bettor: str) -> BettorBalance:
        return await self.balances.get(bettor)

    async def save_balance(self, balance: BettorBalance) -> None:
        await self.balances.upsert(balance)

    async def get_transaction(self, tx_id: str) -> Optional[LedgerTransaction]:
        return await self.transactions.get_by_key(tx_id)

    async def save_transaction(self, tx: LedgerTransaction) -> None:
        await self.transactions.upsert(tx)

    async def list_transactions(
        self,
        status: Optional[TransactionStatus] = None,
        bettor: Optional[str] = None,
        limit: int = 100,
        compensated: Optional[bool] = None,
    ) -> list[LedgerTransaction]:
        return await self.transactions.list_queue(status, bettor, limit, compensated)

    async def get_health_record(self, component: str) -> Optional[SystemHealthRecord]:
        return await self.health.get(component)

    async def save_health_record(self, record: SystemHealthRecord) -> None:
        await self.health.upsert(record)

    async def list_health_records(self) -> list[SystemHealthRecord]:
        return await self.health.list_all()
