"""
Round rules: stake limits, game-size thresholds, fee and phase timing.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from wager_arena.config import ArenaSettings

BPS_DENOMINATOR = 10_000

# Defaults for a production arena
MIN_STAKE = 10_000_000
MAX_PARTICIPANTS = 64
HOUSE_FEE_BPS = 500
LARGE_GAME_THRESHOLD = 8
FINALIST_COUNT = 4


@dataclass(frozen=True)
class RoundRules:
    """Configuration every round is validated and timed against."""

    min_stake: int = MIN_STAKE
    max_stake: Optional[int] = None
    max_participants: int = MAX_PARTICIPANTS
    house_fee_bps: int = HOUSE_FEE_BPS

    # Rounds with at least this many participants run elimination + spectator phases
    large_game_threshold: int = LARGE_GAME_THRESHOLD
    finalist_count: int = FINALIST_COUNT

    waiting_duration: timedelta = timedelta(seconds=30)
    spectator_duration: timedelta = timedelta(seconds=15)
    randomness_timeout: timedelta = timedelta(minutes=10)
    emergency_timeout: timedelta = timedelta(hours=24)

    def __post_init__(self) -> None:
        if not 0 <= self.house_fee_bps < BPS_DENOMINATOR:
            raise ValueError(f"house_fee_bps must be in [0, {BPS_DENOMINATOR}), got {self.house_fee_bps}")
        if self.finalist_count < 1:
            raise ValueError("finalist_count must be at least 1")
        if self.large_game_threshold <= self.finalist_count:
            raise ValueError("large_game_threshold must exceed finalist_count")
        if self.min_stake < 1:
            raise ValueError("min_stake must be positive")
        if self.max_stake is not None and self.max_stake < self.min_stake:
            raise ValueError("max_stake must be >= min_stake")

    @classmethod
    def from_settings(cls, settings: "ArenaSettings") -> "RoundRules":
        return cls(
            min_stake=settings.min_stake,
            max_stake=settings.max_stake,
            max_participants=settings.max_participants,
            house_fee_bps=settings.house_fee_bps,
            large_game_threshold=settings.large_game_threshold,
            finalist_count=settings.finalist_count,
            waiting_duration=timedelta(seconds=settings.waiting_duration),
            spectator_duration=timedelta(seconds=settings.spectator_duration),
            randomness_timeout=timedelta(seconds=settings.randomness_timeout),
            emergency_timeout=timedelta(seconds=settings.emergency_timeout),
        )

    def is_large_game(self, participant_count: int) -> bool:
        return participant_count >= self.large_game_threshold
