"""
Settlement Engine - proportional payouts from final standings.

Pure: the result depends only on the round, its stakes and the fee rate.
No I/O, no clock. Persisting the result and moving value are the state
machine's and the payout executor's jobs.

Per pool:
    payable  = floor(total * (10000 - fee_bps) / 10000)
    payout_i = floor(payable * stake_i / winning_stake_sum)   (winning bets)
    payout_i = 0                                              (losing bets)

Floor-division dust stays with the house. A pool with no stake on the
winner (spectator pool only) is swept to the house in full.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from wager_arena.core.errors import InsufficientPoolFunds, InvariantViolation
from wager_arena.core.rules import BPS_DENOMINATOR
from wager_arena.storage.models import (
    Participant,
    Payout,
    PoolKind,
    Round,
    SpectatorStake,
    StakeStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BetOutcome:
    """Result for one bet."""

    pool: PoolKind
    stake_ref: str
    bettor: str
    target: str
    stake: int
    payout: int
    status: StakeStatus


@dataclass(frozen=True)
class PoolSettlement:
    """Breakdown for one pool."""

    pool: PoolKind
    total: int
    payable: int
    winning_stake_sum: int
    paid_out: int
    swept: bool = False

    @property
    def house_take(self) -> int:
        """Fee + rounding dust, or the whole pool when swept."""
        return self.total - self.paid_out


@dataclass
class SettlementResult:
    round_id: int
    winner: Optional[str]
    refunded: bool
    outcomes: list[BetOutcome] = field(default_factory=list)
    pools: dict[PoolKind, PoolSettlement] = field(default_factory=dict)

    @property
    def house_fee(self) -> int:
        return sum(p.house_take for p in self.pools.values())

    @property
    def total_paid(self) -> int:
        return sum(o.payout for o in self.outcomes)

    def payout_for(self, bettor: str) -> int:
        return sum(o.payout for o in self.outcomes if o.bettor == bettor)

    def to_payouts(self, now: Optional[datetime] = None) -> list[Payout]:
        """Payout lines for every bet that receives value."""
        return [
            Payout(
                round_id=self.round_id,
                bettor=o.bettor,
                pool=o.pool,
                stake_ref=o.stake_ref,
                amount=o.payout,
                refund=self.refunded,
                updated_at=now,
            )
            for o in self.outcomes
            if o.payout > 0
        ]


@dataclass(frozen=True)
class _Bet:
    pool: PoolKind
    stake_ref: str
    bettor: str
    target: str
    stake: int


def payable_amount(total: int, fee_bps: int) -> int:
    return total * (BPS_DENOMINATOR - fee_bps) // BPS_DENOMINATOR


class SettlementEngine:
    """Computes payouts, house fee and refunds for a finished round."""

    def settle(
        self,
        round_: Round,
        participants: Sequence[Participant],
        spectator_stakes: Sequence[SpectatorStake],
        fee_bps: Optional[int] = None,
    ) -> SettlementResult:
        """
        Settle a round with a winner.

        A single-participant round is a full refund with no fee.

        Raises:
            InvariantViolation: winner missing or not a participant, or pool
                totals disagree with the stakes.
            InsufficientPoolFunds: payouts would exceed the payable pool.
        """
        if len(participants) == 1:
            return self.refund_all(round_, participants, spectator_stakes)
        if not participants:
            raise InvariantViolation(round_.round_id, "cannot settle a round with no participants")

        winner = round_.winner
        if winner is None:
            raise InvariantViolation(round_.round_id, "cannot settle without a winner")
        if winner not in {p.bettor for p in participants}:
            raise InvariantViolation(round_.round_id, f"winner {winner} is not a participant")

        fee = round_.house_fee_bps if fee_bps is None else fee_bps
        entry_bets = [
            _Bet(PoolKind.ENTRY, p.bettor, p.bettor, p.bettor, p.stake) for p in participants
        ]
        spectator_bets = [
            _Bet(PoolKind.SPECTATOR, s.stake_id, s.bettor, s.target, s.amount)
            for s in spectator_stakes
        ]

        result = SettlementResult(round_id=round_.round_id, winner=winner, refunded=False)
        for pool, bets, expected_total in (
            (PoolKind.ENTRY, entry_bets, round_.entry_pool_total),
            (PoolKind.SPECTATOR, spectator_bets, round_.spectator_pool_total),
        ):
            breakdown, outcomes = self._settle_pool(
                round_.round_id, pool, bets, expected_total, winner, fee
            )
            result.pools[pool] = breakdown
            result.outcomes.extend(outcomes)

        logger.info(
            f"Round {round_.round_id} settled: winner={winner} "
            f"paid={result.total_paid} house={result.house_fee}"
        )
        return result

    def _settle_pool(
        self,
        round_id: int,
        pool: PoolKind,
        bets: Sequence[_Bet],
        expected_total: int,
        winner: str,
        fee_bps: int,
    ) -> tuple[PoolSettlement, list[BetOutcome]]:
        total = sum(b.stake for b in bets)
        if total != expected_total:
            raise InvariantViolation(
                round_id, f"{pool.value} pool total {expected_total} != sum of bets {total}"
            )

        payable = payable_amount(total, fee_bps)
        winning_sum = sum(b.stake for b in bets if b.target == winner)

        outcomes: list[BetOutcome] = []
        for b in bets:
            if winning_sum > 0 and b.target == winner:
                amount = payable * b.stake // winning_sum
                status = StakeStatus.WON
            else:
                amount = 0
                status = StakeStatus.LOST
            outcomes.append(
                BetOutcome(pool, b.stake_ref, b.bettor, b.target, b.stake, amount, status)
            )

        paid_out = sum(o.payout for o in outcomes)
        if paid_out > payable:
            raise InsufficientPoolFunds(pool.value, payable, paid_out)

        swept = total > 0 and winning_sum == 0
        if swept:
            logger.info(
                f"Round {round_id}: no {pool.value} stake on winner {winner}, "
                f"sweeping {total} to house"
            )
        return (
            PoolSettlement(
                pool=pool,
                total=total,
                payable=payable,
                winning_stake_sum=winning_sum,
                paid_out=paid_out,
                swept=swept,
            ),
            outcomes,
        )

    def refund_all(
        self,
        round_: Round,
        participants: Sequence[Participant],
        spectator_stakes: Sequence[SpectatorStake],
    ) -> SettlementResult:
        """Return every stake in full, no fee. Used for single-participant and cancelled rounds."""
        result = SettlementResult(
            round_id=round_.round_id, winner=round_.winner, refunded=True
        )
        entry_total = 0
        for p in participants:
            result.outcomes.append(
                BetOutcome(PoolKind.ENTRY, p.bettor, p.bettor, p.bettor, p.stake, p.stake, StakeStatus.REFUNDED)
            )
            entry_total += p.stake
        spectator_total = 0
        for s in spectator_stakes:
            result.outcomes.append(
                BetOutcome(PoolKind.SPECTATOR, s.stake_id, s.bettor, s.target, s.amount, s.amount, StakeStatus.REFUNDED)
            )
            spectator_total += s.amount

        for pool, total, expected in (
            (PoolKind.ENTRY, entry_total, round_.entry_pool_total),
            (PoolKind.SPECTATOR, spectator_total, round_.spectator_pool_total),
        ):
            if total != expected:
                raise InvariantViolation(
                    round_.round_id, f"{pool.value} pool total {expected} != sum of bets {total}"
                )
            result.pools[pool] = PoolSettlement(
                pool=pool, total=total, payable=total, winning_stake_sum=total, paid_out=total
            )

        logger.info(f"Round {round_.round_id} refunded: {result.total_paid} returned to bettors")
        return result
