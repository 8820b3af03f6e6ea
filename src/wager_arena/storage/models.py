"""
Pydantic models matching the arena PostgreSQL schema (storage/schema.sql).

Table names and field names match the database columns.

IMPORTANT: All monetary fields are integer base units (e.g. lamports).
Fee rates are basis points. Timestamps are timezone-aware UTC datetimes.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================


class RoundPhase(str, Enum):
    """Lifecycle phase of a round."""

    IDLE = "idle"
    WAITING = "waiting"
    ARENA = "arena"
    SPECTATOR_BETTING = "spectator_betting"
    RESOLVING = "resolving"
    FINISHED = "finished"

    @property
    def is_terminal(self) -> bool:
        return self is RoundPhase.FINISHED


class PendingAction(str, Enum):
    """Awaiting-X sub-state persisted on the round between crank ticks."""

    NONE = "none"
    AWAITING_CLOSE_CONFIRMATION = "awaiting_close_confirmation"
    AWAITING_ELIMINATION_SEED = "awaiting_elimination_seed"
    AWAITING_WINNER_SEED = "awaiting_winner_seed"
    AWAITING_WINNER_CONFIRMATION = "awaiting_winner_confirmation"
    AWAITING_PAYOUTS = "awaiting_payouts"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    COMPUTED = "computed"
    PAID = "paid"
    CLAIM_PENDING = "claim_pending"
    REFUNDED = "refunded"


class PhaseTag(str, Enum):
    """Which selection a randomness request feeds."""

    ELIMINATION = "elimination"
    WINNER = "winner"


class StakeStatus(str, Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    REFUNDED = "refunded"


class PoolKind(str, Enum):
    ENTRY = "entry"
    SPECTATOR = "spectator"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CLAIM_PENDING = "claim_pending"


class TransactionKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PAYOUT = "payout"
    HOUSE_FEE = "house_fee"


class TransactionStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ComponentStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


# =============================================================================
# ROUNDS
# =============================================================================


class Round(BaseModel):
    """One complete play of the game, from first stake to settlement."""

    model_config = ConfigDict(validate_assignment=True)

    round_id: int
    phase: RoundPhase = RoundPhase.IDLE
    created_at: datetime
    phase_started_at: datetime
    phase_deadline: Optional[datetime] = None
    entry_pool_total: int = 0
    spectator_pool_total: int = 0
    house_fee_bps: int = 500
    winner: Optional[str] = None
    finalists: Optional[list[str]] = None
    elimination_request_id: Optional[str] = None
    winner_request_id: Optional[str] = None

    # Persisted awaiting-X sub-state
    pending_action: PendingAction = PendingAction.NONE
    pending_tx: Optional[str] = None

    bets_locked: bool = False
    settlement_status: SettlementStatus = SettlementStatus.PENDING
    house_fee_collected: int = 0
    house_collected: bool = False

    # Manual-intervention gate
    halted: bool = False
    halt_reason: Optional[str] = None

    # Crank retry/backoff
    failure_count: int = 0
    next_attempt_at: Optional[datetime] = None

    cancelled: bool = False
    finished_at: Optional[datetime] = None
    archived: bool = False
    updated_at: Optional[datetime] = None

    @property
    def is_large_game(self) -> bool:
        return self.finalists is not None


class ActiveRoundPointer(BaseModel):
    """Single-row pointer to the round currently in play."""

    round_id: Optional[int] = None
    next_round_id: int = 1
    updated_at: Optional[datetime] = None


class Participant(BaseModel):
    """A bettor who staked into the entry pool of a round."""

    round_id: int
    bettor: str
    stake: int
    is_bot: bool = False
    eliminated: bool = False
    eliminated_at: Optional[datetime] = None
    eliminated_by: Optional[str] = None
    final_rank: Optional[int] = None
    is_winner: bool = False
    joined_at: datetime


class SpectatorStake(BaseModel):
    """A non-finalist's stake on a finalist during the spectator window."""

    stake_id: str
    round_id: int
    bettor: str
    amount: int
    target: str
    status: StakeStatus = StakeStatus.PENDING
    payout: int = 0
    placed_at: datetime


class RandomnessRequest(BaseModel):
    """Round-scoped seed request; fulfilled -> consumed exactly once."""

    round_id: int
    phase_tag: PhaseTag
    oracle_request_id: str
    seed: Optional[bytes] = None
    fulfilled: bool = False
    consumed: bool = False
    requested_at: datetime
    fulfilled_at: Optional[datetime] = None
    consumed_at: Optional[datetime] = None


class Payout(BaseModel):
    """Settlement line owed to one bettor for one bet."""

    round_id: int
    bettor: str
    pool: PoolKind
    stake_ref: str
    amount: int
    refund: bool = False
    status: PayoutStatus = PayoutStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    transfer_ref: Optional[str] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# BALANCES & TRANSACTION QUEUE
# =============================================================================


class BettorBalance(BaseModel):
    """Off-chain balance the deposit/withdrawal queue moves value through."""

    bettor: str
    available: int = 0
    pending: int = 0
    updated_at: Optional[datetime] = None


class LedgerTransaction(BaseModel):
    """Deposit or withdrawal queued for the transfer gateway."""

    tx_id: str
    bettor: str
    kind: TransactionKind
    amount: int
    priority: int = 1
    status: TransactionStatus = TransactionStatus.QUEUED
    queued_at: datetime
    processed_at: Optional[datetime] = None
    external_ref: Optional[str] = None
    error: Optional[str] = None
    compensated: bool = False
    archived: bool = False


# =============================================================================
# RECONCILIATION & HEALTH
# =============================================================================


class ProcessedEvent(BaseModel):
    """External ledger event already applied locally (dedupe key)."""

    event_id: str
    round_id: Optional[int] = None
    kind: str
    processed_at: datetime


class SystemHealthRecord(BaseModel):
    """Per-component status written by the crank after every tick."""

    component: str
    status: ComponentStatus
    consecutive_errors: int = 0
    last_error: Optional[str] = None
    checked_at: datetime
    details: dict[str, Any] = Field(default_factory=dict)
