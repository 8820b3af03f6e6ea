"""
Reconciliation Crank - advances rounds against the external ledger.

One ``tick(now)``:
    1. Health-check the ledger gateway
    2. Fetch the ledger's round snapshot
    3. Mirror the round locally if absent; decode events into typed
       variants, skip already-processed event ids, apply the rest
    4. Drive the state machine for the current phase and elapsed time
    5. Submit close-betting / winner transactions and await confirmation
    6. Persist SystemHealthRecords and detect stuck rounds
    7. Process a batch of queued deposits and withdrawals

Waiting on the outside world is never a suspended call stack: each wait is
a ``pending_action`` persisted on the Round, so a restarted process picks up
where the last one stopped. Running a tick twice against the same ledger
state changes nothing the second time.

Errors:
    - LedgerSubmissionFailed (and gateway transport errors): failure_count
      and next_attempt_at back off exponentially; the round is halted after
      ``max_submission_attempts``.
    - Fatal ArenaErrors (InvariantViolation, InsufficientPoolFunds,
      SeedAlreadyConsumed): the round is halted and an alert raised.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from wager_arena.core.errors import (
    ArenaError,
    InvalidTransition,
    InvariantViolation,
    LedgerSubmissionFailed,
    StakeRejected,
)
from wager_arena.core.state_machine import RoundStateMachine
from wager_arena.ledger.client import GatewayError
from wager_arena.ledger.events import (
    BetPlaced,
    GameInitialized,
    GameLocked,
    GameReset,
    LedgerEvent,
    MalformedLedgerEvent,
    UnknownLedgerEvent,
    WinnerSelected,
    decode_event,
)
from wager_arena.ledger.gateway import LedgerGateway, RoundSnapshot
from wager_arena.monitoring.health_checker import AggregateHealth, ComponentHealth, HealthStatus
from wager_arena.randomness.broker import RandomnessBroker
from wager_arena.storage.models import (
    PendingAction,
    PhaseTag,
    ProcessedEvent,
    Round,
    RoundPhase,
    SettlementStatus,
)

if TYPE_CHECKING:
    from wager_arena.config import ArenaSettings
    from wager_arena.execution.payouts import PayoutExecutor
    from wager_arena.execution.transactions import TransactionQueue
    from wager_arena.monitoring.alerting import AlertManager
    from wager_arena.monitoring.health_checker import HealthChecker

logger = logging.getLogger(__name__)

# Upper bound on transitions applied to one round in one tick
MAX_STEPS_PER_TICK = 16


@dataclass
class CrankConfig:
    """Configuration for the reconciliation crank."""

    max_submission_attempts: int = 8
    backoff_initial: timedelta = timedelta(seconds=2)
    backoff_max: timedelta = timedelta(minutes=2)
    queue_batch_size: int = 20

    @classmethod
    def from_settings(cls, settings: "ArenaSettings") -> "CrankConfig":
        return cls(
            max_submission_attempts=settings.max_submission_attempts,
            backoff_initial=timedelta(seconds=settings.backoff_initial_seconds),
            backoff_max=timedelta(seconds=settings.backoff_max_seconds),
            queue_batch_size=settings.queue_batch_size,
        )

    def backoff(self, failure_count: int) -> timedelta:
        """Delay before the next attempt after ``failure_count`` failures."""
        delay = self.backoff_initial * (2 ** max(0, failure_count - 1))
        return min(delay, self.backoff_max)


@dataclass
class TickReport:
    """What one tick did."""

    ran: bool = True
    round_id: Optional[int] = None
    phase_before: Optional[RoundPhase] = None
    phase_after: Optional[RoundPhase] = None
    events_applied: int = 0
    events_skipped: int = 0
    events_rejected: int = 0
    events_deferred: int = 0
    actions: list[str] = field(default_factory=list)
    error: Optional[str] = None
    health: Optional[AggregateHealth] = None


class ReconciliationCrank:
    """
    Periodic controller for the active round.

    Usage:
        crank = ReconciliationCrank(machine, broker, ledger, payouts)
        report = await crank.tick(datetime.now(timezone.utc))
    """

    def __init__(
        self,
        machine: RoundStateMachine,
        broker: RandomnessBroker,
        ledger: LedgerGateway,
        payouts: "PayoutExecutor",
        queue: Optional["TransactionQueue"] = None,
        health_checker: Optional["HealthChecker"] = None,
        alerts: Optional["AlertManager"] = None,
        config: Optional[CrankConfig] = None,
    ) -> None:
        self.machine = machine
        self.store = machine.store
        self.broker = broker
        self.ledger = ledger
        self.payouts = payouts
        self.queue = queue
        self.health_checker = health_checker
        self.alerts = alerts
        self.config = config or CrankConfig()
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        """Held for the duration of a tick; API stake writes share it."""
        return self._lock

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    async def tick(self, now: datetime) -> TickReport:
        """Run one reconciliation pass. Skips if a previous tick is still running."""
        if self._lock.locked():
            logger.debug("Previous tick still running; skipping")
            return TickReport(ran=False)
        async with self._lock:
            return await self._tick(now)

    async def _tick(self, now: datetime) -> TickReport:
        report = TickReport()

        ledger_health = await self._check_ledger()
        if ledger_health is not None and ledger_health.status is HealthStatus.UNHEALTHY:
            report.error = ledger_health.message
            logger.warning(f"Skipping reconciliation: {ledger_health.message}")
        else:
            snapshot = await self._fetch_snapshot(report)
            if snapshot is not None:
                await self._reconcile(snapshot, now, report)
                await self._drive_active_round(now, report)
                if report.events_deferred and await self.machine.get_active_round() is None:
                    # Local round archived this tick; the ledger's next round can be mirrored now
                    report.events_deferred = 0
                    await self._reconcile(snapshot, now, report)
                    await self._drive_active_round(now, report)

        report.health = await self._record_health(now, ledger_health)

        if self.queue is not None:
            await self.queue.process_batch(now, self.config.queue_batch_size)

        if report.actions:
            logger.info(
                f"Tick round={report.round_id} "
                f"{report.phase_before.value if report.phase_before else '-'} -> "
                f"{report.phase_after.value if report.phase_after else '-'}: "
                f"{', '.join(report.actions)}"
            )
        return report

    async def _check_ledger(self) -> Optional[ComponentHealth]:
        if self.health_checker is None:
            return None
        return await self.health_checker.check_ledger()

    async def _fetch_snapshot(self, report: TickReport) -> Optional[RoundSnapshot]:
        try:
            return await self.ledger.get_round_snapshot()
        except GatewayError as e:
            report.error = f"snapshot fetch failed: {e}"
            logger.warning(f"Ledger snapshot fetch failed: {e}")
            return None

    # -------------------------------------------------------------------------
    # Steps 2-3: mirror and events
    # -------------------------------------------------------------------------

    async def _reconcile(self, snapshot: RoundSnapshot, now: datetime, report: TickReport) -> None:
        if snapshot.round_id is not None:
            await self._mirror_round(snapshot.round_id, now)

        events = list(snapshot.events)
        for position, raw in enumerate(events):
            try:
                event = decode_event(raw)
            except (UnknownLedgerEvent, MalformedLedgerEvent) as e:
                report.events_rejected += 1
                logger.warning(f"Rejected ledger event: {e}")
                continue

            if await self.store.is_event_processed(event.event_id):
                report.events_skipped += 1
                continue
            if await self._is_ahead(event):
                # Left unclaimed; retried once the local round is archived
                report.events_deferred = len(events) - position
                logger.info(
                    f"Deferring {report.events_deferred} ledger event(s) from {event.event_id}: "
                    f"round {event.round_id} opens after the local round is archived"
                )
                break
            # Claim before applying so an event is never applied twice
            claimed = await self.store.mark_event_processed(
                ProcessedEvent(
                    event_id=event.event_id,
                    round_id=event.round_id,
                    kind=event.kind,
                    processed_at=now,
                )
            )
            if not claimed:
                report.events_skipped += 1
                continue

            try:
                await self._apply_event(event, now)
                report.events_applied += 1
            except ArenaError as e:
                report.events_rejected += 1
                await self._handle_round_error(event.round_id, e, now, report)

    async def _is_ahead(self, event: LedgerEvent) -> bool:
        """True if ``event`` belongs to a round after the one still active locally."""
        if event.round_id is None:
            return False
        active = await self.machine.get_active_round()
        return active is not None and event.round_id > active.round_id

    async def _mirror_round(self, round_id: int, now: datetime) -> None:
        """Create the local round for the ledger's current round if absent."""
        if await self.store.get_round(round_id) is not None:
            return
        pointer = await self.store.get_active_pointer()
        if pointer.round_id is None and round_id < pointer.next_round_id:
            # Played here and since purged
            return
        active = await self.machine.get_active_round()
        if active is not None:
            # Local round still finishing; the ledger's next round is mirrored after archive
            logger.debug(f"Ledger is on round {round_id}; local round {active.round_id} still active")
            return
        await self.machine.open_round(now, round_id)

    async def _apply_event(self, event: LedgerEvent, now: datetime) -> None:
        if isinstance(event, GameInitialized):
            await self._mirror_round(event.round_id, now)

        elif isinstance(event, BetPlaced):
            try:
                await self.machine.place_stake(
                    event.bettor,
                    event.amount,
                    event.occurred_at or now,
                    round_id=event.round_id,
                    is_bot=event.is_bot,
                )
            except (StakeRejected, InvalidTransition) as e:
                raise InvariantViolation(
                    event.round_id, f"ledger accepted bet {event.event_id} that is invalid locally: {e}"
                ) from e

        elif isinstance(event, GameLocked):
            round_ = await self.store.get_round(event.round_id)
            if (
                round_ is not None
                and round_.phase is RoundPhase.WAITING
                and round_.pending_action is PendingAction.AWAITING_CLOSE_CONFIRMATION
            ):
                await self.machine.close_entry_window(event.round_id, now)

        elif isinstance(event, WinnerSelected):
            round_ = await self.store.get_round(event.round_id)
            if round_ is not None and round_.winner is not None and round_.winner != event.winner:
                raise InvariantViolation(
                    event.round_id,
                    f"ledger winner {event.winner} differs from local winner {round_.winner}",
                )

        elif isinstance(event, GameReset):
            round_ = await self.store.get_round(event.round_id)
            if round_ is not None and not round_.phase.is_terminal:
                await self.machine.halt(event.round_id, "ledger reported the round was reset")

    # -------------------------------------------------------------------------
    # Steps 4-5: drive the state machine
    # -------------------------------------------------------------------------

    async def _drive_active_round(self, now: datetime, report: TickReport) -> None:
        round_ = await self.machine.get_active_round()
        if round_ is None:
            return

        report.round_id = round_.round_id
        report.phase_before = round_.phase
        if round_.halted:
            logger.debug(f"Round {round_.round_id} halted ({round_.halt_reason}); not progressing")
            report.phase_after = round_.phase
            return
        if round_.next_attempt_at is not None and now < round_.next_attempt_at:
            logger.debug(f"Round {round_.round_id} backing off until {round_.next_attempt_at}")
            report.phase_after = round_.phase
            return

        round_id = round_.round_id
        try:
            for _ in range(MAX_STEPS_PER_TICK):
                round_ = await self.machine.get_round(round_id)
                action = await self._step(round_, now)
                if action is None:
                    break
                report.actions.append(action)
                if action == "archive":
                    break
            else:
                logger.warning(f"Round {round_id}: step limit reached in one tick")
        except GatewayError as e:
            await self._handle_round_error(round_id, LedgerSubmissionFailed("round progression", str(e)), now, report)
        except ArenaError as e:
            await self._handle_round_error(round_id, e, now, report)
        else:
            if report.actions:
                await self._clear_backoff(round_id)

        final = await self.store.get_round(round_id)
        report.phase_after = final.phase if final else None

    async def _set_pending(self, round_: Round, action: PendingAction, tx: Optional[str] = None) -> None:
        round_.pending_action = action
        round_.pending_tx = tx
        await self.store.save_round(round_)

    async def _submit(self, operation: str, coro) -> str:
        try:
            return await coro
        except GatewayError as e:
            raise LedgerSubmissionFailed(operation, str(e)) from e

    async def _confirmed(self, round_: Round, operation: str) -> bool:
        """Poll the pending tx. A failed tx is cleared so the next attempt resubmits."""
        try:
            return await self.ledger.await_confirmation(round_.pending_tx)
        except GatewayError as e:
            await self._set_pending(round_, PendingAction.NONE)
            raise LedgerSubmissionFailed(operation, str(e)) from e

    async def _seed(self, round_: Round, tag: PhaseTag, waiting: PendingAction, now: datetime) -> Optional[bytes]:
        """Request, poll and consume the seed for ``tag``. None while waiting."""
        request = await self.broker.get(round_.round_id, tag)
        if request is None:
            request = await self.broker.request(round_.round_id, tag, now)
            if tag is PhaseTag.ELIMINATION:
                round_.elimination_request_id = request.oracle_request_id
            else:
                round_.winner_request_id = request.oracle_request_id
            await self._set_pending(round_, waiting)
            return None
        if request.consumed:
            raise InvariantViolation(
                round_.round_id, f"{tag.value} seed consumed but its outcome was never recorded"
            )
        if round_.pending_action is not waiting:
            await self._set_pending(round_, waiting)
        if not await self.broker.poll_fulfillment(round_.round_id, tag, now):
            return None
        return await self.broker.consume_seed(round_.round_id, tag, now)

    async def _step(self, round_: Round, now: datetime) -> Optional[str]:
        """Apply at most one transition. Returns its name, or None if nothing is due."""
        round_id = round_.round_id
        phase = round_.phase

        if phase is RoundPhase.IDLE:
            return None

        if phase is RoundPhase.WAITING:
            if round_.phase_deadline is not None and now < round_.phase_deadline:
                return None
            if round_.pending_action is not PendingAction.AWAITING_CLOSE_CONFIRMATION:
                handle = await self._submit("close betting", self.ledger.submit_close_betting(round_id))
                await self._set_pending(round_, PendingAction.AWAITING_CLOSE_CONFIRMATION, handle)
                return "submit_close_betting"
            if not await self._confirmed(round_, "close betting"):
                return None
            await self.machine.close_entry_window(round_id, now)
            return "close_entry_window"

        if phase is RoundPhase.ARENA:
            had_request = await self.broker.get(round_id, PhaseTag.ELIMINATION) is not None
            seed = await self._seed(round_, PhaseTag.ELIMINATION, PendingAction.AWAITING_ELIMINATION_SEED, now)
            if seed is None:
                return None if had_request else "request_elimination_seed"
            await self.machine.apply_elimination(round_id, seed, now)
            return "apply_elimination"

        if phase is RoundPhase.SPECTATOR_BETTING:
            if round_.phase_deadline is not None and now < round_.phase_deadline:
                return None
            await self.machine.close_spectator_window(round_id, now)
            return "close_spectator_window"

        if phase is RoundPhase.RESOLVING:
            return await self._step_resolving(round_, now)

        if phase is RoundPhase.FINISHED:
            await self.machine.archive(round_id, now)
            return "archive"

        return None

    async def _step_resolving(self, round_: Round, now: datetime) -> Optional[str]:
        round_id = round_.round_id
        status = round_.settlement_status

        if status is SettlementStatus.COMPUTED:
            await self.payouts.execute(round_id, now)
            return "execute_payouts"
        if status in (SettlementStatus.PAID, SettlementStatus.CLAIM_PENDING, SettlementStatus.REFUNDED):
            await self.machine.finish(round_id, now)
            return "finish"

        if round_.winner is None:
            candidates = await self.machine.candidates(round_)
            if not self.machine.selector.needs_randomness(candidates):
                await self.machine.select_winner(round_id, None, now)
                return "select_winner"
            had_request = await self.broker.get(round_id, PhaseTag.WINNER) is not None
            seed = await self._seed(round_, PhaseTag.WINNER, PendingAction.AWAITING_WINNER_SEED, now)
            if seed is None:
                return None if had_request else "request_winner_seed"
            await self.machine.select_winner(round_id, seed, now)
            return "select_winner"

        if round_.pending_action is not PendingAction.AWAITING_WINNER_CONFIRMATION:
            handle = await self._submit("submit winner", self.ledger.submit_winner(round_id, round_.winner))
            await self._set_pending(round_, PendingAction.AWAITING_WINNER_CONFIRMATION, handle)
            return "submit_winner"
        if not await self._confirmed(round_, "submit winner"):
            return None
        await self.machine.record_settlement(round_id, now)
        return "record_settlement"

    # -------------------------------------------------------------------------
    # Error handling
    # -------------------------------------------------------------------------

    async def _handle_round_error(
        self, round_id: Optional[int], error: ArenaError, now: datetime, report: TickReport
    ) -> None:
        report.error = str(error)
        round_ = await self.store.get_round(round_id) if round_id is not None else None
        if round_ is None:
            # Never charged to another round
            logger.error(f"Round {round_id}: no local round for error: {error}")
            return

        if error.retryable:
            logger.warning(f"Retryable error: {error}")
            await self._record_failure(round_, error, now)
            return

        if error.fatal:
            logger.error(f"Fatal error: {error}")
            await self._halt(round_.round_id, str(error))
            return

        # Rejected actions (wrong phase, bad stake) mean local and ledger state disagree
        logger.error(f"Round {round_id}: action rejected during reconciliation: {error}")

    async def _record_failure(self, round_: Round, error: ArenaError, now: datetime) -> None:
        round_.failure_count += 1
        round_.next_attempt_at = now + self.config.backoff(round_.failure_count)
        await self.store.save_round(round_)
        logger.warning(
            f"Round {round_.round_id}: attempt {round_.failure_count}/"
            f"{self.config.max_submission_attempts} failed; next at {round_.next_attempt_at}"
        )
        if round_.failure_count >= self.config.max_submission_attempts:
            await self._halt(
                round_.round_id,
                f"{round_.failure_count} consecutive submission failures: {error}",
            )

    async def _halt(self, round_id: int, reason: str) -> None:
        await self.machine.halt(round_id, reason)
        if self.alerts is not None:
            self.alerts.alert_round_halted(round_id, reason)

    async def _clear_backoff(self, round_id: int) -> None:
        round_ = await self.store.get_round(round_id)
        if round_ is not None and (round_.failure_count or round_.next_attempt_at):
            round_.failure_count = 0
            round_.next_attempt_at = None
            await self.store.save_round(round_)

    # -------------------------------------------------------------------------
    # Step 6: health
    # -------------------------------------------------------------------------

    async def _record_health(
        self, now: datetime, ledger_health: Optional[ComponentHealth]
    ) -> Optional[AggregateHealth]:
        if self.health_checker is None:
            return None
        aggregate = await self.health_checker.check_all(now, ledger=ledger_health)
        await self.health_checker.record(aggregate)

        if self.alerts is None:
            return aggregate
        for component in aggregate.components:
            if component.status is HealthStatus.HEALTHY:
                continue
            if component.component == "round_progression":
                self.alerts.alert_stuck_round(
                    component.details.get("round_id", 0),
                    component.details.get("phase", "unknown"),
                    component.message,
                )
            elif component.status is HealthStatus.UNHEALTHY:
                self.alerts.alert_health_issue(
                    component.component, component.status.value, component.message
                )
        return aggregate
