"""
In-memory RoundStore.

Used by the unit tests and by ``--memory`` local runs. Every read and write
deep-copies, so callers observe the same semantics as the Postgres store:
mutating a returned model changes nothing until it is saved.
"""
from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

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


class InMemoryRoundStore:
    """Dict-backed implementation of the RoundStore protocol."""

    def __init__(self) -> None:
        self._pointer = ActiveRoundPointer()
        self._rounds: Dict[int, Round] = {}
        self._participants: Dict[Tuple[int, str], Participant] = {}
        self._spectator_stakes: Dict[str, SpectatorStake] = {}
        self._randomness: Dict[Tuple[int, PhaseTag], RandomnessRequest] = {}
        self._payouts: Dict[Tuple[int, str, str], Payout] = {}
        self._events: Dict[str, ProcessedEvent] = {}
        self._balances: Dict[str, BettorBalance] = {}
        self._transactions: Dict[str, LedgerTransaction] = {}
        self._health: Dict[str, SystemHealthRecord] = {}

    # -------------------------------------------------------------------------
    # Active round pointer
    # -------------------------------------------------------------------------

    async def get_active_pointer(self) -> ActiveRoundPointer:
        return self._pointer.model_copy(deep=True)

    async def save_active_pointer(self, pointer: ActiveRoundPointer) -> None:
        self._pointer = pointer.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Rounds
    # -------------------------------------------------------------------------

    async def get_round(self, round_id: int) -> Optional[Round]:
        round_ = self._rounds.get(round_id)
        return round_.model_copy(deep=True) if round_ else None

    async def save_round(self, round_: Round) -> Round:
        self._rounds[round_.round_id] = round_.model_copy(deep=True)
        return round_

    async def list_rounds(
        self,
        phases: Optional[Sequence[RoundPhase]] = None,
        include_archived: bool = False,
        limit: int = 100,
    ) -> list[Round]:
        rounds = [
            r for r in self._rounds.values()
            if (phases is None or r.phase in phases)
            and (include_archived or not r.archived)
        ]
        rounds.sort(key=lambda r: r.round_id, reverse=True)
        return [r.model_copy(deep=True) for r in rounds[:limit]]

    async def purge_round(self, round_id: int) -> int:
        """Delete a round and its children. Returns number of rows removed."""
        removed = 0
        if self._rounds.pop(round_id, None) is not None:
            removed += 1
        for key in [k for k in self._participants if k[0] == round_id]:
            del self._participants[key]
            removed += 1
        for key in [k for k, s in self._spectator_stakes.items() if s.round_id == round_id]:
            del self._spectator_stakes[key]
            removed += 1
        for key in [k for k in self._randomness if k[0] == round_id]:
            del self._randomness[key]
            removed += 1
        for key in [k for k in self._payouts if k[0] == round_id]:
            del self._payouts[key]
            removed += 1
        return removed

    # -------------------------------------------------------------------------
    # Participants & spectator stakes
    # -------------------------------------------------------------------------

    async def get_participants(self, round_id: int) -> list[Participant]:
        participants = [p for p in self._participants.values() if p.round_id == round_id]
        participants.sort(key=lambda p: (p.joined_at, p.bettor))
        return [p.model_copy(deep=True) for p in participants]

    async def save_participant(self, participant: Participant) -> None:
        key = (participant.round_id, participant.bettor)
        self._participants[key] = participant.model_copy(deep=True)

    async def get_spectator_stakes(self, round_id: int) -> list[SpectatorStake]:
        stakes = [s for s in self._spectator_stakes.values() if s.round_id == round_id]
        stakes.sort(key=lambda s: (s.placed_at, s.stake_id))
        return [s.model_copy(deep=True) for s in stakes]

    async def save_spectator_stake(self, stake: SpectatorStake) -> None:
        self._spectator_stakes[stake.stake_id] = stake.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Randomness
    # -------------------------------------------------------------------------

    async def get_randomness_request(
        self, round_id: int, phase_tag: PhaseTag
    ) -> Optional[RandomnessRequest]:
        request = self._randomness.get((round_id, phase_tag))
        return request.model_copy(deep=True) if request else None

    async def insert_randomness_request(self, request: RandomnessRequest) -> bool:
        """Insert if absent. Returns False when the round+tag already exists."""
        key = (request.round_id, request.phase_tag)
        if key in self._randomness:
            return False
        self._randomness[key] = request.model_copy(deep=True)
        return True

    async def save_randomness_request(self, request: RandomnessRequest) -> None:
        self._randomness[(request.round_id, request.phase_tag)] = request.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Payouts
    # -------------------------------------------------------------------------

    async def get_payouts(self, round_id: int, bettor: Optional[str] = None) -> list[Payout]:
        payouts = [
            p for p in self._payouts.values()
            if p.round_id == round_id and (bettor is None or p.bettor == bettor)
        ]
        payouts.sort(key=lambda p: (p.pool.value, p.stake_ref))
        return [p.model_copy(deep=True) for p in payouts]

    async def save_payout(self, payout: Payout) -> None:
        key = (payout.round_id, payout.pool.value, payout.stake_ref)
        self._payouts[key] = payout.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # External event dedupe
    # -------------------------------------------------------------------------

    async def is_event_processed(self, event_id: str) -> bool:
        return event_id in self._events

    async def mark_event_processed(self, event: ProcessedEvent) -> bool:
        if event.event_id in self._events:
            return False
        self._events[event.event_id] = event.model_copy(deep=True)
        return True

    # -------------------------------------------------------------------------
    # Balances & transaction queue
    # -------------------------------------------------------------------------

    async def get_balance(self, bettor: str) -> BettorBalance:
        balance = self._balances.get(bettor)
        return balance.model_copy(deep=True) if balance else BettorBalance(bettor=bettor)

    async def save_balance(self, balance: BettorBalance) -> None:
        self._balances[balance.bettor] = balance.model_copy(deep=True)

    async def get_transaction(self, tx_id: str) -> Optional[LedgerTransaction]:
        tx = self._transactions.get(tx_id)
        return tx.model_copy(deep=True) if tx else None

    async def save_transaction(self, tx: LedgerTransaction) -> None:
        self._transactions[tx.tx_id] = tx.model_copy(deep=True)

    async def list_transactions(
        self,
        status: Optional[TransactionStatus] = None,
        bettor: Optional[str] = None,
        limit: int = 100,
        compensated: Optional[bool] = None,
    ) -> list[LedgerTransaction]:
        txs = [
            t for t in self._transactions.values()
            if (status is None or t.status == status)
            and (bettor is None or t.bettor == bettor)
            and (compensated is None or t.compensated == compensated)
            and not t.archived
        ]
        # Highest priority first, oldest first within a priority
        txs.sort(key=lambda t: (-t.priority, t.queued_at))
        return [t.model_copy(deep=True) for t in txs[:limit]]

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def get_health_record(self, component: str) -> Optional[SystemHealthRecord]:
        record = self._health.get(component)
        return record.model_copy(deep=True) if record else None

    async def save_health_record(self, record: SystemHealthRecord) -> None:
        self._health[record.component] = record.model_copy(deep=True)

    async def list_health_records(self) -> list[SystemHealthRecord]:
        return [r.model_copy(deep=True) for r in sorted(self._health.values(), key=lambda r: r.component)]
