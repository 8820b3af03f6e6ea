"""
Repository exports.

All repositories for the arena store.
"""
from wager_arena.storage.repositories.base import BaseRepository
from wager_arena.storage.repositories.health_repo import SystemHealthRepository
from wager_arena.storage.repositories.ledger_repo import (
    BettorBalanceRepository,
    LedgerTransactionRepository,
    ProcessedEventRepository,
)
from wager_arena.storage.repositories.payout_repo import PayoutRepository
from wager_arena.storage.repositories.randomness_repo import RandomnessRequestRepository
from wager_arena.storage.repositories.round_repo import (
    ActiveRoundRepository,
    RoundRepository,
)
from wager_arena.storage.repositories.stake_repo import (
    ParticipantRepository,
    SpectatorStakeRepository,
)

__all__ = [
    "BaseRepository",
    # Rounds
    "RoundRepository",
    "ActiveRoundRepository",
    # Stakes
    "ParticipantRepository",
    "SpectatorStakeRepository",
    # Randomness
    "RandomnessRequestRepository",
    # Settlement
    "PayoutRepository",
    # Ledger
    "LedgerTransactionRepository",
    "BettorBalanceRepository",
    "ProcessedEventRepository",
    # Health
    "SystemHealthRepository",
]
