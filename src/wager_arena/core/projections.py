"""
Read-only projections of round state for the presentation layer.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from wager_arena.core.errors import RoundNotFound
from wager_arena.storage.models import (
    Participant,
    Payout,
    Round,
    RoundPhase,
    SpectatorStake,
)
from wager_arena.storage.protocol import RoundStore


class RoundView(BaseModel):
    round_id: int
    phase: RoundPhase
    created_at: datetime
    phase_started_at: datetime
    phase_deadline: Optional[datetime]
    seconds_remaining: Optional[float]
    entry_pool_total: int
    spectator_pool_total: int
    house_fee_bps: int
    winner: Optional[str]
    finalists: Optional[list[str]]
    bets_locked: bool
    settlement_status: str
    cancelled: bool
    halted: bool
    participants: list[Participant]
    spectator_stakes: list[SpectatorStake]
    payouts: list[Payout]


def _seconds_remaining(round_: Round, now: datetime) -> Optional[float]:
    if round_.phase_deadline is None:
        return None
    return max(0.0, (round_.phase_deadline - now).total_seconds())


async def round_view(store: RoundStore, round_id: int, now: datetime) -> RoundView:
    round_ = await store.get_round(round_id)
    if round_ is None:
        raise RoundNotFound(round_id)
    return RoundView(
        round_id=round_.round_id,
        phase=round_.phase,
        created_at=round_.created_at,
        phase_started_at=round_.phase_started_at,
        phase_deadline=round_.phase_deadline,
        seconds_remaining=_seconds_remaining(round_, now),
        entry_pool_total=round_.entry_pool_total,
        spectator_pool_total=round_.spectator_pool_total,
        house_fee_bps=round_.house_fee_bps,
        winner=round_.winner,
        finalists=round_.finalists,
        bets_locked=round_.bets_locked,
        settlement_status=round_.settlement_status.value,
        cancelled=round_.cancelled,
        halted=round_.halted,
        participants=await store.get_participants(round_id),
        spectator_stakes=await store.get_spectator_stakes(round_id),
        payouts=await store.get_payouts(round_id),
    )


async def active_round_view(store: RoundStore, now: datetime) -> Optional[RoundView]:
    pointer = await store.get_active_pointer()
    if pointer.round_id is None:
        return None
    return await round_view(store, pointer.round_id, now)
