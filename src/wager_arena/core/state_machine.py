"""
Round State Machine - phase ownership and legal transitions.

    Idle -> Waiting -> Arena -> SpectatorBetting -> Resolving -> Finished   (large games)
    Idle -> Waiting -> Resolving -> Finished                                (small games)

Every operation re-reads the persisted round before acting and raises
InvalidTransition when the round is not in the phase the action needs, so
repeated invocation by the crank never applies a transition twice.

Write ordering: child records (participants, stakes, payouts) are saved
before the Round row, and the active-round pointer last. The Round row is
the commit point.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from wager_arena.core.errors import (
    InvalidTransition,
    InvariantViolation,
    ResetNotAllowed,
    RoundNotFound,
    StakeRejected,
)
from wager_arena.core.pool_ledger import PoolLedger
from wager_arena.core.rules import RoundRules
from wager_arena.core.selector import Candidate, WeightedSelector
from wager_arena.core.settlement import SettlementEngine, SettlementResult
from wager_arena.storage.models import (
    ActiveRoundPointer,
    Participant,
    PendingAction,
    PhaseTag,
    PoolKind,
    Round,
    RoundPhase,
    SettlementStatus,
    SpectatorStake,
)
from wager_arena.storage.protocol import RoundStore

logger = logging.getLogger(__name__)

_SEED_ACTIONS = {
    PendingAction.AWAITING_ELIMINATION_SEED: PhaseTag.ELIMINATION,
    PendingAction.AWAITING_WINNER_SEED: PhaseTag.WINNER,
}

# Rank shared by every losing winner-candidate
RUNNER_UP_RANK = 2


class RoundStateMachine:
    """
    Owns round phases, timers and the legal transition set.

    Usage:
        machine = RoundStateMachine(store, RoundRules())

        await machine.place_stake("alice", 50_000_000, now)
        ...
        round_ = await machine.close_entry_window(round_id, now)
    """

    def __init__(
        self,
        store: RoundStore,
        rules: Optional[RoundRules] = None,
        selector: Optional[WeightedSelector] = None,
        engine: Optional[SettlementEngine] = None,
    ) -> None:
        self.store = store
        self.rules = rules or RoundRules()
        self.selector = selector or WeightedSelector()
        self.engine = engine or SettlementEngine()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_round(self, round_id: int) -> Round:
        round_ = await self.store.get_round(round_id)
        if round_ is None:
            raise RoundNotFound(round_id)
        return round_

    async def get_active_round(self) -> Optional[Round]:
        pointer = await self.store.get_active_pointer()
        if pointer.round_id is None:
            return None
        return await self.store.get_round(pointer.round_id)

    async def candidates(self, round_: Round) -> list[Candidate]:
        """Winner candidates: finalists for large games, everyone otherwise."""
        participants = await self.store.get_participants(round_.round_id)
        if round_.finalists is not None:
            by_bettor = {p.bettor: p for p in participants}
            chosen = [by_bettor[b] for b in round_.finalists if b in by_bettor]
            if len(chosen) != len(round_.finalists):
                raise InvariantViolation(round_.round_id, "finalist missing from participants")
        else:
            chosen = participants
        return [Candidate(p.bettor, p.stake, p.is_bot) for p in chosen]

    def _require(self, round_: Round, action: str, *phases: RoundPhase) -> None:
        if round_.phase not in phases:
            raise InvalidTransition(round_.round_id, action, round_.phase.value)

    def _enter(self, round_: Round, phase: RoundPhase, now: datetime, deadline: Optional[datetime] = None) -> None:
        logger.info(f"Round {round_.round_id}: {round_.phase.value} -> {phase.value}")
        round_.phase = phase
        round_.phase_started_at = now
        round_.phase_deadline = deadline

    async def _ledger(self, round_id: int) -> PoolLedger:
        return PoolLedger.from_records(
            round_id,
            await self.store.get_participants(round_id),
            await self.store.get_spectator_stakes(round_id),
        )

    # -------------------------------------------------------------------------
    # Round creation
    # -------------------------------------------------------------------------

    async def open_round(self, now: datetime, round_id: Optional[int] = None) -> Round:
        """
        Return the active round, creating an Idle one if none is active.

        ``round_id`` pins the id, used when mirroring a round the external
        ledger already created.
        """
        pointer = await self.store.get_active_pointer()
        if pointer.round_id is not None:
            existing = await self.store.get_round(pointer.round_id)
            if existing is not None:
                if round_id is not None and existing.round_id != round_id:
                    raise InvalidTransition(
                        round_id,
                        "open",
                        existing.phase.value,
                        f"round {existing.round_id} is still active",
                    )
                return existing
            round_id = pointer.round_id

        if round_id is None:
            round_id = pointer.next_round_id
        elif await self.store.get_round(round_id) is not None:
            raise InvalidTransition(round_id, "open", "exists", "round id already used")

        round_ = Round(
            round_id=round_id,
            phase=RoundPhase.IDLE,
            created_at=now,
            phase_started_at=now,
            house_fee_bps=self.rules.house_fee_bps,
        )
        await self.store.save_round(round_)
        await self.store.save_active_pointer(
            ActiveRoundPointer(
                round_id=round_id,
                next_round_id=max(pointer.next_round_id, round_id + 1),
                updated_at=now,
            )
        )
        logger.info(f"Opened round {round_id}")
        return round_

    # -------------------------------------------------------------------------
    # Stakes
    # -------------------------------------------------------------------------

    def _validate_amount(self, bettor: str, amount: int) -> None:
        if amount < self.rules.min_stake:
            raise StakeRejected(bettor, f"amount {amount} below minimum {self.rules.min_stake}")
        if self.rules.max_stake is not None and amount > self.rules.max_stake:
            raise StakeRejected(bettor, f"amount {amount} above maximum {self.rules.max_stake}")

    async def place_stake(
        self,
        bettor: str,
        amount: int,
        now: datetime,
        round_id: Optional[int] = None,
        is_bot: bool = False,
    ) -> Participant:
        """
        Stake into the entry pool of the active round.

        The first stake opens the round and starts the waiting deadline. A
        repeat stake from the same bettor increases their participant stake.
        """
        self._validate_amount(bettor, amount)

        round_ = await self.open_round(now, round_id)
        self._require(round_, "place stake", RoundPhase.IDLE, RoundPhase.WAITING)
        if round_.bets_locked:
            raise StakeRejected(bettor, "bets are locked")
        if round_.phase is RoundPhase.WAITING and now >= round_.phase_deadline:
            raise StakeRejected(bettor, "entry window closed")

        participants = await self.store.get_participants(round_.round_id)
        ledger = PoolLedger.from_records(round_.round_id, participants)
        existing = next((p for p in participants if p.bettor == bettor), None)
        if existing is None and len(participants) >= self.rules.max_participants:
            raise StakeRejected(bettor, f"round is full ({self.rules.max_participants} participants)")

        new_stake = ledger.add_entry(bettor, amount)
        if existing is None:
            participant = Participant(
                round_id=round_.round_id,
                bettor=bettor,
                stake=new_stake,
                is_bot=is_bot,
                joined_at=now,
            )
        else:
            participant = existing
            participant.stake = new_stake

        if round_.phase is RoundPhase.IDLE:
            self._enter(round_, RoundPhase.WAITING, now, now + self.rules.waiting_duration)
        round_.entry_pool_total = ledger.entry_total

        await self.store.save_participant(participant)
        await self.store.save_round(round_)
        logger.info(
            f"Round {round_.round_id}: stake {amount} from {bettor} "
            f"(stake={new_stake}, pool={round_.entry_pool_total})"
        )
        return participant

    async def place_spectator_stake(
        self,
        round_id: int,
        bettor: str,
        target: str,
        amount: int,
        now: datetime,
        stake_id: Optional[str] = None,
    ) -> SpectatorStake:
        """Stake on a finalist during the spectator window."""
        self._validate_amount(bettor, amount)

        round_ = await self.get_round(round_id)
        self._require(round_, "place spectator stake", RoundPhase.SPECTATOR_BETTING)
        if round_.halted:
            raise StakeRejected(bettor, "round is halted")
        if round_.phase_deadline is not None and now >= round_.phase_deadline:
            raise StakeRejected(bettor, "spectator window closed")
        finalists = round_.finalists or []
        if bettor in finalists:
            raise StakeRejected(bettor, "finalists cannot place spectator stakes")
        if target not in finalists:
            raise StakeRejected(bettor, f"target {target} is not a finalist")

        ledger = await self._ledger(round_id)
        ledger.verify(round_)
        ledger.add_spectator(bettor, amount)

        stake = SpectatorStake(
            stake_id=stake_id or uuid.uuid4().hex,
            round_id=round_id,
            bettor=bettor,
            amount=amount,
            target=target,
            placed_at=now,
        )
        round_.spectator_pool_total = ledger.spectator_total

        await self.store.save_spectator_stake(stake)
        await self.store.save_round(round_)
        logger.info(f"Round {round_id}: spectator stake {amount} from {bettor} on {target}")
        return stake

    # -------------------------------------------------------------------------
    # Phase transitions
    # -------------------------------------------------------------------------

    async def close_entry_window(self, round_id: int, now: datetime) -> Round:
        """Waiting -> Arena (large game) or Resolving (small game). Locks entry stakes."""
        round_ = await self.get_round(round_id)
        self._require(round_, "close entry window", RoundPhase.WAITING)
        if round_.phase_deadline is not None and now < round_.phase_deadline:
            raise InvalidTransition(round_id, "close entry window", round_.phase.value, "deadline not reached")

        participants = await self.store.get_participants(round_id)
        if not participants:
            raise InvariantViolation(round_id, "waiting round has no participants")
        (await self._ledger(round_id)).verify(round_)

        round_.bets_locked = True
        round_.pending_action = PendingAction.NONE
        round_.pending_tx = None
        if self.rules.is_large_game(len(participants)):
            self._enter(round_, RoundPhase.ARENA, now)
        else:
            self._enter(round_, RoundPhase.RESOLVING, now)
        return await self.store.save_round(round_)

    async def apply_elimination(self, round_id: int, seed: bytes, now: datetime) -> Round:
        """Arena -> SpectatorBetting. Consumes the elimination seed's outcome."""
        round_ = await self.get_round(round_id)
        self._require(round_, "apply elimination", RoundPhase.ARENA)
        if round_.finalists is not None:
            raise InvariantViolation(round_id, "finalists already selected")

        participants = await self.store.get_participants(round_id)
        result = self.selector.select_finalists(
            [Candidate(p.bettor, p.stake, p.is_bot) for p in participants],
            seed,
            self.rules.finalist_count,
        )

        for p in participants:
            if p.bettor in result.ranks:
                p.eliminated = True
                p.eliminated_at = now
                p.final_rank = result.ranks[p.bettor]
                await self.store.save_participant(p)

        round_.finalists = result.finalists
        round_.pending_action = PendingAction.NONE
        self._enter(round_, RoundPhase.SPECTATOR_BETTING, now, now + self.rules.spectator_duration)
        logger.info(f"Round {round_id}: finalists {result.finalists}")
        return await self.store.save_round(round_)

    async def close_spectator_window(self, round_id: int, now: datetime) -> Round:
        """SpectatorBetting -> Resolving once the spectator deadline passes."""
        round_ = await self.get_round(round_id)
        self._require(round_, "close spectator window", RoundPhase.SPECTATOR_BETTING)
        if round_.phase_deadline is not None and now < round_.phase_deadline:
            raise InvalidTransition(round_id, "close spectator window", round_.phase.value, "deadline not reached")
        round_.pending_action = PendingAction.NONE
        self._enter(round_, RoundPhase.RESOLVING, now)
        return await self.store.save_round(round_)

    async def select_winner(self, round_id: int, seed: Optional[bytes], now: datetime) -> Round:
        """
        Assign the winner. Set exactly once.

        ``seed`` may be None only when the outcome is already determined
        (one candidate, or one human among bots).
        """
        round_ = await self.get_round(round_id)
        self._require(round_, "select winner", RoundPhase.RESOLVING)
        if round_.winner is not None:
            raise InvariantViolation(round_id, f"winner already assigned ({round_.winner})")
        if round_.cancelled:
            raise InvalidTransition(round_id, "select winner", round_.phase.value, "round was cancelled")

        candidates = await self.candidates(round_)
        result = self.selector.select_winner(candidates, seed)
        if result.anomaly:
            logger.error(f"Round {round_id}: winner chosen by highest-stake fallback")

        names = {c.bettor for c in candidates}
        for p in await self.store.get_participants(round_id):
            if p.bettor not in names:
                continue
            if p.bettor == result.winner:
                p.is_winner = True
                p.final_rank = 1
            else:
                p.final_rank = RUNNER_UP_RANK
            await self.store.save_participant(p)

        round_.winner = result.winner
        round_.pending_action = PendingAction.NONE
        logger.info(f"Round {round_id}: winner {result.winner}")
        return await self.store.save_round(round_)

    async def record_settlement(self, round_id: int, now: datetime) -> SettlementResult:
        """
        Compute settlement and persist payout lines and stake outcomes.

        Runs once per round: a second call raises InvalidTransition.
        """
        round_ = await self.get_round(round_id)
        self._require(round_, "record settlement", RoundPhase.RESOLVING)
        if not round_.bets_locked:
            raise InvariantViolation(round_id, "settlement attempted with bets unlocked")
        if round_.settlement_status is not SettlementStatus.PENDING:
            raise InvalidTransition(
                round_id, "record settlement", round_.phase.value,
                f"settlement already {round_.settlement_status.value}",
            )

        participants = await self.store.get_participants(round_id)
        stakes = await self.store.get_spectator_stakes(round_id)
        if round_.cancelled:
            result = self.engine.refund_all(round_, participants, stakes)
        else:
            result = self.engine.settle(round_, participants, stakes)
        await self._persist_settlement(round_, result, stakes, now)
        return result

    async def _persist_settlement(
        self,
        round_: Round,
        result: SettlementResult,
        stakes: list[SpectatorStake],
        now: datetime,
    ) -> None:
        outcomes = {(o.pool, o.stake_ref): o for o in result.outcomes}
        for s in stakes:
            outcome = outcomes.get((PoolKind.SPECTATOR, s.stake_id))
            if outcome is not None:
                s.status = outcome.status
                s.payout = outcome.payout
                await self.store.save_spectator_stake(s)

        for payout in result.to_payouts(now):
            await self.store.save_payout(payout)

        round_.settlement_status = SettlementStatus.COMPUTED
        round_.house_fee_collected = result.house_fee
        round_.pending_action = PendingAction.AWAITING_PAYOUTS
        await self.store.save_round(round_)

    async def finish(self, round_id: int, now: datetime) -> Round:
        """Resolving -> Finished once payouts are paid, refunded or left to claim."""
        round_ = await self.get_round(round_id)
        self._require(round_, "finish", RoundPhase.RESOLVING)
        if round_.settlement_status not in (
            SettlementStatus.PAID,
            SettlementStatus.CLAIM_PENDING,
            SettlementStatus.REFUNDED,
        ):
            raise InvalidTransition(
                round_id, "finish", round_.phase.value,
                f"settlement is {round_.settlement_status.value}",
            )
        if round_.winner is None and not round_.cancelled:
            raise InvariantViolation(round_id, "finishing a round with no winner that was not cancelled")

        round_.bets_locked = False
        round_.pending_action = PendingAction.NONE
        round_.pending_tx = None
        round_.finished_at = now
        self._enter(round_, RoundPhase.FINISHED, now)
        return await self.store.save_round(round_)

    async def archive(self, round_id: int, now: datetime) -> Round:
        """Archive a finished round and release the active pointer."""
        round_ = await self.get_round(round_id)
        self._require(round_, "archive", RoundPhase.FINISHED)
        if not round_.archived:
            round_.archived = True
            await self.store.save_round(round_)

        pointer = await self.store.get_active_pointer()
        if pointer.round_id == round_id:
            pointer.round_id = None
            pointer.updated_at = now
            await self.store.save_active_pointer(pointer)
            logger.info(f"Round {round_id} archived; no active round")
        return round_

    # -------------------------------------------------------------------------
    # Operator actions
    # -------------------------------------------------------------------------

    async def halt(self, round_id: int, reason: str) -> Round:
        round_ = await self.get_round(round_id)
        if not round_.halted:
            round_.halted = True
            round_.halt_reason = reason
            await self.store.save_round(round_)
            logger.critical(f"Round {round_id} HALTED: {reason}")
        return round_

    async def resume(self, round_id: int) -> Round:
        """Clear a halt and the crank backoff so the round progresses again."""
        round_ = await self.get_round(round_id)
        if not round_.halted:
            raise InvalidTransition(round_id, "resume", round_.phase.value, "round is not halted")
        logger.warning(f"Round {round_id} resumed (was halted: {round_.halt_reason})")
        round_.halted = False
        round_.halt_reason = None
        round_.failure_count = 0
        round_.next_attempt_at = None
        return await self.store.save_round(round_)

    async def reset_eligibility(self, round_: Round, now: datetime) -> Optional[str]:
        """Why the round may be force-reset now, or None if it may not."""
        if now - round_.phase_started_at >= self.rules.emergency_timeout:
            return "emergency timeout"
        tag = _SEED_ACTIONS.get(round_.pending_action)
        if tag is not None:
            request = await self.store.get_randomness_request(round_.round_id, tag)
            started = request.requested_at if request else round_.phase_started_at
            if now - started >= self.rules.randomness_timeout:
                return "randomness timeout"
        return None

    async def force_reset(self, round_id: int, reason: str, now: datetime) -> SettlementResult:
        """
        Cancel a stuck round and refund every stake in full.

        Allowed after the emergency timeout in a non-terminal phase, or after
        the randomness timeout while waiting on a seed. Never declares a winner.
        """
        round_ = await self.get_round(round_id)
        if round_.phase.is_terminal:
            raise ResetNotAllowed(round_id, "round already finished")
        if round_.settlement_status is not SettlementStatus.PENDING:
            raise ResetNotAllowed(round_id, f"settlement already {round_.settlement_status.value}")
        eligibility = await self.reset_eligibility(round_, now)
        if eligibility is None:
            raise ResetNotAllowed(round_id, "timeouts have not elapsed")

        logger.warning(f"Force reset of round {round_id} ({eligibility}): {reason}")
        participants = await self.store.get_participants(round_id)
        stakes = await self.store.get_spectator_stakes(round_id)

        round_.cancelled = True
        round_.bets_locked = True
        round_.halted = False
        round_.halt_reason = None
        round_.failure_count = 0
        round_.next_attempt_at = None
        round_.pending_tx = None
        if round_.phase is not RoundPhase.RESOLVING:
            self._enter(round_, RoundPhase.RESOLVING, now)

        result = self.engine.refund_all(round_, participants, stakes)
        await self._persist_settlement(round_, result, stakes, now)
        return result
