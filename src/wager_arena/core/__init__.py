"""
Core - round lifecycle, selection and settlement.

Public API:
    RoundStateMachine - phase ownership, stakes, transitions, operator actions
    RoundRules - stake limits, thresholds, fee and timing
    PoolLedger - per-round stake accounting
    WeightedSelector, Candidate, SeedStream - integer weighted selection
    SettlementEngine, SettlementResult - pure payout computation

    Errors:
        ArenaError and subclasses (see core.errors)
"""
from wager_arena.core.errors import (
    ArenaError,
    AutoPayoutFailed,
    DuplicateRandomnessRequest,
    InsufficientPoolFunds,
    InvalidTransition,
    InvariantViolation,
    LedgerSubmissionFailed,
    ResetNotAllowed,
    RoundNotFound,
    SeedAlreadyConsumed,
    SeedNotFulfilled,
    StakeRejected,
)
from wager_arena.core.pool_ledger import PoolLedger
from wager_arena.core.projections import RoundView, active_round_view, round_view
from wager_arena.core.rules import BPS_DENOMINATOR, RoundRules
from wager_arena.core.selector import (
    Candidate,
    EliminationResult,
    SeedStream,
    WeightedSelector,
    WinnerResult,
)
from wager_arena.core.settlement import (
    BetOutcome,
    PoolSettlement,
    SettlementEngine,
    SettlementResult,
)
from wager_arena.core.state_machine import RoundStateMachine

__all__ = [
    # State machine
    "RoundStateMachine",
    "RoundRules",
    "BPS_DENOMINATOR",
    # Accounting
    "PoolLedger",
    # Selection
    "WeightedSelector",
    "Candidate",
    "SeedStream",
    "EliminationResult",
    "WinnerResult",
    # Settlement
    "SettlementEngine",
    "SettlementResult",
    "PoolSettlement",
    "BetOutcome",
    # Projections
    "RoundView",
    "round_view",
    "active_round_view",
    # Errors
    "ArenaError",
    "InvalidTransition",
    "StakeRejected",
    "DuplicateRandomnessRequest",
    "SeedNotFulfilled",
    "SeedAlreadyConsumed",
    "InsufficientPoolFunds",
    "LedgerSubmissionFailed",
    "AutoPayoutFailed",
    "InvariantViolation",
    "RoundNotFound",
    "ResetNotAllowed",
]
