"""
Wager Arena - Main Entry Point

Runs the reconciliation crank, the housekeeping loop and the HTTP API for
one arena, or performs an operator action against a round.

Usage:
    python -m wager_arena.main                      # Run the service
    python -m wager_arena.main --memory --no-api    # Local run, in-memory store
    python -m wager_arena.main --once               # One crank tick, then exit
    python -m wager_arena.main resume 42            # Clear a halt on round 42
    python -m wager_arena.main force-reset 42 --reason "oracle down"

Configuration:
    Settings are read from ``ARENA_*`` environment variables and ``.env``
    (see wager_arena.config.ArenaSettings). ``LOG_LEVEL`` sets the log level.
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import logging
import os
import signal
import sys
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator, Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

from wager_arena.api import create_app
from wager_arena.config import ArenaSettings
from wager_arena.core import RoundRules, RoundStateMachine
from wager_arena.core.errors import ArenaError, AutoPayoutFailed
from wager_arena.crank import CrankConfig, CrankRunner, ReconciliationCrank, RunnerConfig
from wager_arena.execution import PayoutExecutor, TransactionQueue
from wager_arena.ledger import HttpLedgerGateway, HttpTransferGateway
from wager_arena.monitoring import AlertManager, HealthChecker
from wager_arena.randomness import HttpRandomnessOracle, RandomnessBroker
from wager_arena.storage import Database, DatabaseConfig, InMemoryRoundStore, PostgresRoundStore

# Default PID file location
DEFAULT_PID_FILE = "/tmp/wager-arena.pid"


class SingletonServiceError(Exception):
    """Raised when another service instance is already running."""
    pass


@contextmanager
def singleton_lock(pid_file: str = DEFAULT_PID_FILE) -> Generator[None, None, None]:
    """
    Ensure only one crank runs at a time.

    Two cranks against the same store would each submit ledger transactions
    for the same round.

    Raises:
        SingletonServiceError: If another instance holds the lock
    """
    pid_path = Path(pid_file)

    existing_pid = None
    try:
        existing_pid = pid_path.read_text().strip()
    except FileNotFoundError:
        pass

    # "a+" so the file is not truncated before we hold the lock
    fp = open(pid_path, "a+")

    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fp.close()
        raise SingletonServiceError(
            f"Another arena instance is already running (PID: {existing_pid or 'unknown'})"
        )

    fp.seek(0)
    fp.truncate()
    fp.write(str(os.getpid()))
    fp.flush()

    def cleanup():
        if fp.closed:
            return
        fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
        fp.close()
        pid_path.unlink(missing_ok=True)

    atexit.register(cleanup)

    try:
        logger.info(f"Acquired singleton lock (PID: {os.getpid()}, file: {pid_file})")
        yield
    finally:
        cleanup()
        atexit.unregister(cleanup)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ArenaService:
    """
    Wires the arena components and runs them until shutdown.

    Components:
    - Store (Postgres or in-memory)
    - Ledger, oracle and transfer gateways
    - State machine, randomness broker, payout executor, transaction queue
    - Health checker and alerts
    - Crank runner and the HTTP API
    """

    def __init__(self, settings: ArenaSettings, use_memory: bool = False, api_enabled: bool = True):
        self.settings = settings
        self._use_memory = use_memory or settings.use_memory_store
        self._api_enabled = api_enabled and settings.api_enabled
        self._running = False
        self._shutdown_event = asyncio.Event()

        self._db: Optional[Database] = None
        self.store = None
        self.ledger: Optional[HttpLedgerGateway] = None
        self.oracle: Optional[HttpRandomnessOracle] = None
        self.transfer: Optional[HttpTransferGateway] = None
        self.alerts: Optional[AlertManager] = None
        self.machine: Optional[RoundStateMachine] = None
        self.payouts: Optional[PayoutExecutor] = None
        self.queue: Optional[TransactionQueue] = None
        self.crank: Optional[ReconciliationCrank] = None
        self._runner: Optional[CrankRunner] = None
        self._api_task: Optional[asyncio.Task] = None

    async def init(self) -> None:
        """Create every component. Connects to the database when not in memory mode."""
        s = self.settings

        if self._use_memory:
            self.store = InMemoryRoundStore()
            logger.info("Store: in-memory")
        else:
            self._db = Database(DatabaseConfig(url=s.database_url))
            await self._db.initialize()
            if not await self._db.health_check():
                raise RuntimeError("Database health check failed")
            await self._db.apply_schema()
            self.store = PostgresRoundStore(self._db)
            logger.info("Store: PostgreSQL")

        client_kwargs = dict(
            timeout=s.gateway_timeout_seconds,
            max_retries=s.gateway_max_retries,
            api_key=s.gateway_api_key,
        )
        self.ledger = HttpLedgerGateway(s.ledger_url, **client_kwargs)
        self.oracle = HttpRandomnessOracle(s.oracle_url, **client_kwargs)
        self.transfer = HttpTransferGateway(s.transfer_url, **client_kwargs)

        self.alerts = AlertManager(
            telegram_bot_token=s.telegram_bot_token,
            telegram_chat_id=s.telegram_chat_id,
        )
        if s.telegram_bot_token and s.telegram_chat_id:
            logger.info("Alerts: Telegram configured")
        else:
            logger.info("Alerts: Telegram not configured (alerts logged only)")

        rules = RoundRules.from_settings(s)
        self.machine = RoundStateMachine(self.store, rules)
        self.payouts = PayoutExecutor(
            self.store, self.transfer, on_failure=self._on_payout_failed, house_account=s.house_account
        )
        self.queue = TransactionQueue(self.store, self.transfer, batch_size=s.queue_batch_size)
        health = HealthChecker(
            self.store,
            rules,
            ledger=self.ledger,
            db=self._db,
            stuck_grace=timedelta(seconds=s.stuck_grace),
        )
        self.crank = ReconciliationCrank(
            self.machine,
            RandomnessBroker(self.store, self.oracle),
            self.ledger,
            self.payouts,
            queue=self.queue,
            health_checker=health,
            alerts=self.alerts,
            config=CrankConfig.from_settings(s),
        )

    def _on_payout_failed(self, error: AutoPayoutFailed) -> None:
        self.alerts.alert_payout_failed(error.round_id, error.bettor, error.amount, error.reason)

    async def start(self) -> None:
        """Run the crank (and API) until a signal requests shutdown."""
        logger.info("=" * 60)
        logger.info("WAGER ARENA")
        logger.info("=" * 60)

        self._running = True
        self._shutdown_event.clear()
        self._setup_signal_handlers()

        try:
            await self.init()

            await self.queue.requeue_processing()

            self._runner = CrankRunner(
                self.crank,
                self.store,
                self.queue,
                RunnerConfig.from_settings(self.settings),
                payouts=self.payouts,
            )
            await self._runner.start()

            if self._api_enabled:
                self._start_api()

            logger.info("Arena started. Press Ctrl+C to stop")
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def _start_api(self) -> None:
        import uvicorn

        app = create_app(self.machine, self.payouts, round_lock=self.crank.lock, alerts=self.alerts)
        config = uvicorn.Config(
            app,
            host=self.settings.api_host,
            port=self.settings.api_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)
        # Signals are handled by this service, not uvicorn
        server.install_signal_handlers = lambda: None
        self._api_task = asyncio.create_task(server.serve(), name="api")
        logger.info(f"API started at http://{self.settings.api_host}:{self.settings.api_port}")

    async def stop(self) -> None:
        """Stop components in reverse order."""
        if not self._running:
            return
        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        if self._api_task is not None:
            self._api_task.cancel()
            await asyncio.gather(self._api_task, return_exceptions=True)

        if self._runner is not None:
            await self._runner.stop()

        await self.close()
        logger.info("Shutdown complete")

    async def close(self) -> None:
        """Release HTTP sessions and the database pool."""
        for client in (self.ledger, self.oracle, self.transfer):
            if client is not None:
                await client.close()
        if self._db is not None:
            await self._db.close()

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Wager Arena",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--memory", action="store_true", help="Use the in-memory store")
    parser.add_argument("--no-api", action="store_true", help="Do not start the HTTP API")
    parser.add_argument("--once", action="store_true", help="Run a single crank tick and exit")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    parser.add_argument("--pid-file", default=DEFAULT_PID_FILE, help="Singleton lock file")

    sub = parser.add_subparsers(dest="command")
    resume = sub.add_parser("resume", help="Clear the halt on a round")
    resume.add_argument("round_id", type=int)
    reset = sub.add_parser("force-reset", help="Cancel a stuck round and refund every stake")
    reset.add_argument("round_id", type=int)
    reset.add_argument("--reason", default="operator force reset")
    return parser.parse_args(argv)


async def run_operator_command(service: ArenaService, args: argparse.Namespace) -> int:
    """Apply one operator action against the configured store."""
    await service.init()
    try:
        now = utc_now()
        if args.command == "resume":
            round_ = await service.machine.resume(args.round_id)
            logger.info(f"Round {round_.round_id} resumed in phase {round_.phase.value}")
        elif args.command == "force-reset":
            result = await service.machine.force_reset(args.round_id, args.reason, now)
            logger.info(f"Round {args.round_id} reset; {result.total_paid} to refund")
        return 0
    except ArenaError as e:
        logger.error(str(e))
        return 1
    finally:
        await service.close()


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    settings = ArenaSettings()
    service = ArenaService(settings, use_memory=args.memory, api_enabled=not args.no_api)

    if args.command is not None:
        return await run_operator_command(service, args)

    if args.once:
        await service.init()
        try:
            report = await service.crank.tick(utc_now())
            logger.info(f"Tick: actions={report.actions} error={report.error}")
            return 1 if report.error else 0
        finally:
            await service.close()

    try:
        await service.start()
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        with singleton_lock(args.pid_file):
            try:
                return asyncio.run(main_async(args))
            except KeyboardInterrupt:
                return 0
    except SingletonServiceError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
