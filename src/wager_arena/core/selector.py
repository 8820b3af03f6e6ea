"""
Weighted Selector - elimination and winner selection from a consumed seed.

Weights dampen large stakes so the biggest bettor does not simply win:

    w_i     = sqrt(stake_i)
    jitter  = w_i * U(lo, hi)
    final_i = w_i + jitter

Elimination uses U(0.3, 0.7); the winner draw uses the wider U(0.2, 0.8)
for more upset potential in the deciding round.

All arithmetic is integer. Weights are fixed-point (``isqrt(stake * SCALE^2)``),
jitter factors are basis points, and every random value comes from a
SHA-256 counter-mode stream over the seed, so a given seed produces the same
outcome on every platform.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from math import isqrt
from typing import Optional, Sequence

from wager_arena.core.errors import InvariantViolation

logger = logging.getLogger(__name__)

# Fixed-point scale for sqrt(stake)
WEIGHT_SCALE = 1_000_000

# Jitter ranges in basis points (inclusive)
ELIMINATION_JITTER_BPS = (3_000, 7_000)
WINNER_JITTER_BPS = (2_000, 8_000)

_BPS = 10_000


class SeedStream:
    """
    Deterministic integer stream derived from a seed.

    Block ``n`` is ``sha256(domain || 0x00 || seed || n)``; each draw uses one
    256-bit block, so modulo bias is below ``n / 2**256``.
    """

    def __init__(self, seed: bytes, domain: str = "") -> None:
        if not seed:
            raise ValueError("seed must be non-empty")
        self._prefix = domain.encode() + b"\x00" + bytes(seed)
        self._counter = 0

    def next_int(self) -> int:
        block = hashlib.sha256(self._prefix + self._counter.to_bytes(8, "big")).digest()
        self._counter += 1
        return int.from_bytes(block, "big")

    def below(self, n: int) -> int:
        """Uniform integer in [0, n)."""
        if n <= 0:
            raise ValueError(f"upper bound must be positive, got {n}")
        return self.next_int() % n

    def between(self, lo: int, hi: int) -> int:
        """Uniform integer in [lo, hi]."""
        return lo + self.below(hi - lo + 1)


@dataclass(frozen=True)
class Candidate:
    """A participant eligible for selection."""

    bettor: str
    stake: int
    is_bot: bool = False


@dataclass(frozen=True)
class WeightedCandidate:
    bettor: str
    stake: int
    base_weight: int
    jitter_bps: int
    final_weight: int


@dataclass(frozen=True)
class EliminationResult:
    """Finalists in placement order, plus ranks for everyone eliminated."""

    finalists: list[str]
    eliminated: list[str]
    ranks: dict[str, int]
    weights: list[WeightedCandidate]


@dataclass(frozen=True)
class WinnerResult:
    winner: str
    draw: Optional[int]
    total_weight: int
    weights: list[WeightedCandidate]
    bypassed: bool = False  # Sole human among candidates, no draw made
    anomaly: bool = False  # Cumulative walk selected nobody; fell back to highest stake


def base_weight(stake: int) -> int:
    """floor(sqrt(stake) * WEIGHT_SCALE)."""
    if stake <= 0:
        return 0
    return isqrt(stake * WEIGHT_SCALE * WEIGHT_SCALE)


class WeightedSelector:
    """
    Stake-weighted random selection.

    Usage:
        selector = WeightedSelector()
        result = selector.select_finalists(candidates, seed, finalist_count=4)
        winner = selector.select_winner(finalists, other_seed).winner
    """

    def weigh(
        self,
        candidates: Sequence[Candidate],
        stream: SeedStream,
        jitter_bps: tuple[int, int],
    ) -> list[WeightedCandidate]:
        """Draw one jitter factor per candidate, in input order."""
        lo, hi = jitter_bps
        weighted = []
        for c in candidates:
            w = base_weight(c.stake)
            factor = stream.between(lo, hi)
            weighted.append(
                WeightedCandidate(
                    bettor=c.bettor,
                    stake=c.stake,
                    base_weight=w,
                    jitter_bps=factor,
                    final_weight=w + w * factor // _BPS,
                )
            )
        return weighted

    def select_finalists(
        self,
        candidates: Sequence[Candidate],
        seed: bytes,
        finalist_count: int,
    ) -> EliminationResult:
        """
        Keep the ``finalist_count`` highest final weights.

        An eliminated candidate at 1-based ``position`` in the descending
        order gets ``final_rank = total - position + 2``. Equal final
        weights share the rank of the first of them. Ties in final weight
        keep input order for finalist membership.
        """
        if finalist_count < 1:
            raise ValueError("finalist_count must be at least 1")
        _check_unique(candidates)
        if len(candidates) <= finalist_count:
            raise InvariantViolation(
                None,
                f"elimination needs more than {finalist_count} candidates, got {len(candidates)}",
            )

        stream = SeedStream(seed, domain="elimination")
        weighted = self.weigh(candidates, stream, ELIMINATION_JITTER_BPS)
        ordered = sorted(weighted, key=lambda w: w.final_weight, reverse=True)

        finalists = [w.bettor for w in ordered[:finalist_count]]
        total = len(ordered)
        ranks: dict[str, int] = {}
        previous: Optional[WeightedCandidate] = None
        for position, w in enumerate(ordered[finalist_count:], start=finalist_count + 1):
            if previous is not None and previous.final_weight == w.final_weight:
                ranks[w.bettor] = ranks[previous.bettor]
            else:
                ranks[w.bettor] = total - position + 2
            previous = w

        logger.debug(f"Elimination: finalists={finalists} eliminated={len(ranks)}")
        return EliminationResult(
            finalists=finalists,
            eliminated=list(ranks),
            ranks=ranks,
            weights=weighted,
        )

    @staticmethod
    def needs_randomness(candidates: Sequence[Candidate]) -> bool:
        """False when the winner is already determined (one candidate, or one human)."""
        return _sole_human(candidates) is None

    def select_winner(
        self,
        candidates: Sequence[Candidate],
        seed: Optional[bytes],
    ) -> WinnerResult:
        """
        Pick one winner with probability proportional to final weight.

        Draws an integer in [0, Σfinal) and takes the first candidate whose
        cumulative weight exceeds it.
        """
        if not candidates:
            raise InvariantViolation(None, "winner selection with no candidates")
        _check_unique(candidates)

        sole = _sole_human(candidates)
        if sole is not None:
            return WinnerResult(
                winner=sole.bettor, draw=None, total_weight=0, weights=[], bypassed=True
            )
        if not seed:
            raise InvariantViolation(None, "winner selection requires a seed")

        stream = SeedStream(seed, domain="winner")
        weighted = self.weigh(candidates, stream, WINNER_JITTER_BPS)
        total = sum(w.final_weight for w in weighted)

        winner: Optional[str] = None
        draw: Optional[int] = None
        if total > 0:
            draw = stream.below(total)
            cumulative = 0
            for w in weighted:
                cumulative += w.final_weight
                if draw < cumulative:
                    winner = w.bettor
                    break

        if winner is None:
            fallback = max(candidates, key=lambda c: c.stake)
            logger.warning(
                f"ANOMALY: weighted draw selected no winner "
                f"(total_weight={total}, draw={draw}); "
                f"falling back to highest stake {fallback.bettor}"
            )
            return WinnerResult(
                winner=fallback.bettor,
                draw=draw,
                total_weight=total,
                weights=weighted,
                anomaly=True,
            )

        return WinnerResult(winner=winner, draw=draw, total_weight=total, weights=weighted)


def _sole_human(candidates: Sequence[Candidate]) -> Optional[Candidate]:
    if len(candidates) == 1:
        return candidates[0]
    humans = [c for c in candidates if not c.is_bot]
    return humans[0] if len(humans) == 1 else None


def _check_unique(candidates: Sequence[Candidate]) -> None:
    seen = set()
    for c in candidates:
        if c.bettor in seen:
            raise InvariantViolation(None, f"duplicate candidate {c.bettor}")
        seen.add(c.bettor)
