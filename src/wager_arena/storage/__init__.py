"""
Storage Layer - round persistence.

This is the foundation layer that all other components depend on.
Built on asyncpg for production and an in-memory store for tests.

Public API:
    Database, DatabaseConfig - Connection pool management
    RoundStore - Persistence protocol the core depends on
    PostgresRoundStore - asyncpg implementation of RoundStore
    InMemoryRoundStore - dict-backed implementation of RoundStore

    Models (matching storage/schema.sql):
        Round, ActiveRoundPointer
        Participant, SpectatorStake
        RandomnessRequest, Payout
        BettorBalance, LedgerTransaction
        ProcessedEvent, SystemHealthRecord
"""
from wager_arena.storage.database import Database, DatabaseConfig
from wager_arena.storage.memory import InMemoryRoundStore
from wager_arena.storage.models import (
    ActiveRoundPointer,
    BettorBalance,
    ComponentStatus,
    LedgerTransaction,
    Participant,
    Payout,
    PayoutStatus,
    PendingAction,
    PhaseTag,
    PoolKind,
    ProcessedEvent,
    RandomnessRequest,
    Round,
    RoundPhase,
    SettlementStatus,
    SpectatorStake,
    StakeStatus,
    SystemHealthRecord,
    TransactionKind,
    TransactionStatus,
)
from wager_arena.storage.postgres import PostgresRoundStore
from wager_arena.storage.protocol import RoundStore

__all__ = [
    # Database
    "Database",
    "DatabaseConfig",
    # Stores
    "RoundStore",
    "PostgresRoundStore",
    "InMemoryRoundStore",
    # Enums
    "RoundPhase",
    "PendingAction",
    "SettlementStatus",
    "PhaseTag",
    "StakeStatus",
    "PoolKind",
    "PayoutStatus",
    "TransactionKind",
    "TransactionStatus",
    "ComponentStatus",
    # Models
    "Round",
    "ActiveRoundPointer",
    "Participant",
    "SpectatorStake",
    "RandomnessRequest",
    "Payout",
    "BettorBalance",
    "LedgerTransaction",
    "ProcessedEvent",
    "SystemHealthRecord",
]
