"""
CrankRunner - drives the reconciliation crank on a fixed cadence.

Runs two background loops:
- Crank tick (every few seconds)
- Housekeeping: retry uncollected house fees, purge long-archived rounds,
  archive settled transactions
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, List, Optional

from wager_arena.storage.models import RoundPhase

if TYPE_CHECKING:
    from wager_arena.config import ArenaSettings
    from wager_arena.crank.reconciliation import ReconciliationCrank
    from wager_arena.execution.payouts import PayoutExecutor
    from wager_arena.execution.transactions import TransactionQueue
    from wager_arena.storage.protocol import RoundStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunnerConfig:
    """Configuration for the crank runner loops."""

    tick_interval_seconds: float = 5.0

    cleanup_interval_seconds: float = 3600  # 1 hour
    cleanup_enabled: bool = True
    archive_after: timedelta = timedelta(days=3)
    transaction_retention: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: "ArenaSettings") -> "RunnerConfig":
        return cls(
            tick_interval_seconds=settings.tick_interval_seconds,
            cleanup_interval_seconds=settings.cleanup_interval_seconds,
            archive_after=timedelta(days=settings.archive_after_days),
            transaction_retention=timedelta(days=settings.transaction_retention_days),
        )


class CrankRunner:
    """
    Runs the crank and housekeeping as background tasks.

    Usage:
        runner = CrankRunner(crank, store, queue, RunnerConfig())
        await runner.start()
        # ... service runs ...
        await runner.stop()
    """

    def __init__(
        self,
        crank: "ReconciliationCrank",
        store: "RoundStore",
        queue: Optional["TransactionQueue"] = None,
        config: Optional[RunnerConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        payouts: Optional["PayoutExecutor"] = None,
    ) -> None:
        self._crank = crank
        self._store = store
        self._queue = queue
        self._payouts = payouts
        self._config = config or RunnerConfig()
        self._clock = clock

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background loops."""
        if self._running:
            logger.warning("CrankRunner already running")
            return

        logger.info("Starting crank runner...")
        self._running = True
        self._stop_event.clear()

        self._tasks.append(asyncio.create_task(self._tick_loop(), name="crank_tick"))
        logger.info(f"Started crank tick task (interval={self._config.tick_interval_seconds}s)")

        if self._config.cleanup_enabled:
            self._tasks.append(asyncio.create_task(self._cleanup_loop(), name="cleanup"))
            logger.info(f"Started cleanup task (interval={self._config.cleanup_interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the loops gracefully."""
        if not self._running:
            return

        logger.info("Stopping crank runner...")
        self._running = False
        self._stop_event.set()

        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        logger.info("Crank runner stopped")

    async def _wait(self, interval: float) -> bool:
        """Sleep for ``interval``. Returns True if a stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            return True
        except asyncio.TimeoutError:
            return not self._running

    async def _tick_loop(self) -> None:
        while self._running:
            try:
                await self._crank.tick(self._clock())
                if await self._wait(self._config.tick_interval_seconds):
                    break
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in crank tick: {e}", exc_info=True)
                await asyncio.sleep(5)

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                if await self._wait(self._config.cleanup_interval_seconds):
                    break
                await self.cleanup(self._clock())
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in cleanup: {e}")
                await asyncio.sleep(5)

    async def cleanup(self, now: datetime) -> int:
        """Purge archived rounds finished before the cutoff. Returns rows removed.

        A round whose house fee is still owed is retried here and never purged.
        """
        cutoff = now - self._config.archive_after
        removed = 0
        for round_ in await self._store.list_rounds(
            phases=[RoundPhase.FINISHED], include_archived=True, limit=500
        ):
            if round_.house_fee_collected and not round_.house_collected:
                if self._payouts is None or not await self._payouts.collect_house_fee(round_.round_id, now):
                    # Kept until its fee is out
                    continue
            if round_.archived and round_.finished_at is not None and round_.finished_at < cutoff:
                removed += await self._store.purge_round(round_.round_id)

        if self._queue is not None:
            archived = await self._queue.archive_settled(now, self._config.transaction_retention)
            if archived:
                logger.info(f"Cleanup: archived {archived} settled transactions")
        if removed:
            logger.info(f"Cleanup: purged {removed} rows from old rounds")
        return removed
