"""
Core layer test fixtures.

Core tests run the state machine against the in-memory store; nothing
here talks to a ledger or an oracle.
"""
from datetime import datetime, timedelta, timezone

import pytest

from wager_arena.core import RoundRules, RoundStateMachine
from wager_arena.storage import InMemoryRoundStore, Participant, Round, RoundPhase, SpectatorStake


@pytest.fixture
def now():
    return datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def seed():
    return bytes.fromhex("5eed" * 16)


@pytest.fixture
def rules():
    """Small numbers: stakes of 1+, large game from 4 players, 2 finalists."""
    return RoundRules(min_stake=1, large_game_threshold=4, finalist_count=2)


@pytest.fixture
def store():
    return InMemoryRoundStore()


@pytest.fixture
def machine(store, rules):
    return RoundStateMachine(store, rules)


@pytest.fixture
def make_round(now):
    def _make(round_id=1, winner=None, entry=0, spectator=0, fee_bps=500, **kwargs):
        return Round(
            round_id=round_id,
            phase=kwargs.pop("phase", RoundPhase.RESOLVING),
            created_at=now,
            phase_started_at=now,
            entry_pool_total=entry,
            spectator_pool_total=spectator,
            house_fee_bps=fee_bps,
            winner=winner,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_participant(now):
    def _make(bettor, stake, round_id=1, is_bot=False):
        return Participant(round_id=round_id, bettor=bettor, stake=stake, is_bot=is_bot, joined_at=now)
    return _make


@pytest.fixture
def make_spectator_stake(now):
    def _make(stake_id, bettor, target, amount, round_id=1):
        return SpectatorStake(
            stake_id=stake_id, round_id=round_id, bettor=bettor, target=target, amount=amount, placed_at=now
        )
    return _make


@pytest.fixture
def stake_all(machine, now):
    """Place one entry stake per (bettor, amount) pair, one second apart."""
    async def _stake(*stakes):
        for i, (bettor, amount) in enumerate(stakes):
            await machine.place_stake(bettor, amount, now + timedelta(seconds=i))
        return await machine.get_active_round()
    return _stake
