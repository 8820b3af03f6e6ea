"""
Execution Layer - value movement.

This module provides:
    - PayoutExecutor: Auto-payout of settlement lines and the house fee, claim-later fallback
    - PayoutSummary: Result of a payout run
    - TransactionQueue: Deposit/withdrawal queue with compensation on failure
    - QueueStats: Result of a queue batch
    - Exceptions: InsufficientBalance
"""
from wager_arena.execution.payouts import PayoutExecutor, PayoutSummary, house_tx_id, payout_tx_id
from wager_arena.execution.transactions import (
    InsufficientBalance,
    QueueStats,
    TransactionQueue,
)

__all__ = [
    "PayoutExecutor",
    "PayoutSummary",
    "payout_tx_id",
    "house_tx_id",
    "TransactionQueue",
    "QueueStats",
    "InsufficientBalance",
]
