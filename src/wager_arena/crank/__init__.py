"""
Crank package - periodic reconciliation of the active round.

The crank is the only thing that moves a round forward on its own. Each
tick reconciles against the external ledger, applies new events, advances
the phase when its timer or dependency resolves, and records health.

Components:
    - ReconciliationCrank: one idempotent reconciliation pass per ``tick``
    - CrankConfig: retry / backoff / batch settings
    - TickReport: what a tick did
    - CrankRunner: background loops for ticks and housekeeping
"""

from wager_arena.crank.reconciliation import (
    CrankConfig,
    ReconciliationCrank,
    TickReport,
)
from wager_arena.crank.runner import CrankRunner, RunnerConfig

__all__ = [
    "CrankConfig",
    "CrankRunner",
    "ReconciliationCrank",
    "RunnerConfig",
    "TickReport",
]
