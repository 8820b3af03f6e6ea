"""
Health Checker for component health monitoring.

Monitors the external ledger, the randomness oracle, the database and the
progression of the active round, and persists one SystemHealthRecord per
component after every crank tick.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, List, Optional

from wager_arena.ledger.client import GatewayError
from wager_arena.storage.models import (
    ComponentStatus,
    PendingAction,
    PhaseTag,
    Round,
    RoundPhase,
    SystemHealthRecord,
)

if TYPE_CHECKING:
    from wager_arena.core.rules import RoundRules
    from wager_arena.ledger.gateway import LedgerGateway
    from wager_arena.storage import Database, RoundStore

logger = logging.getLogger(__name__)

# Status levels are the ones SystemHealthRecord persists
HealthStatus = ComponentStatus

OVERALL = "overall"


@dataclass
class ComponentHealth:
    """Health check result for a single component."""

    component: str
    status: HealthStatus
    message: str
    latency_ms: Optional[float] = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class AggregateHealth:
    """Overall system health."""

    status: HealthStatus
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get(self, component: str) -> Optional[ComponentHealth]:
        return next((c for c in self.components if c.component == component), None)


class HealthChecker:
    """
    Checks health of arena components.

    Monitors:
    - Ledger gateway connectivity and latency
    - Randomness oracle (age of unfulfilled seed requests)
    - Database connectivity (when running on Postgres)
    - Round progression (stuck rounds, halted rounds)

    Usage:
        checker = HealthChecker(store, rules, ledger=ledger, db=db)

        # Check all components and persist the results
        overall = await checker.check_all(now)
        await checker.record(overall)
    """

    def __init__(
        self,
        store: "RoundStore",
        rules: "RoundRules",
        ledger: Optional["LedgerGateway"] = None,
        db: Optional["Database"] = None,
        stuck_grace: timedelta = timedelta(minutes=5),
        stuck_critical: timedelta = timedelta(hours=1),
        ledger_latency_threshold_ms: float = 2000.0,
    ) -> None:
        """
        Initialize the health checker.

        Args:
            store: Round store (read for round state, written with records)
            rules: Round rules, for expected phase durations
            ledger: Ledger gateway to check
            db: Database to check (None when running on the in-memory store)
            stuck_grace: Time past a phase's expected end before it is degraded
            stuck_critical: Time past a phase's expected end before it is unhealthy
            ledger_latency_threshold_ms: Latency above which the ledger is degraded
        """
        self.store = store
        self.rules = rules
        self.ledger = ledger
        self.db = db
        self._stuck_grace = stuck_grace
        self._stuck_critical = stuck_critical
        self._latency_threshold_ms = ledger_latency_threshold_ms

    async def check_ledger(self) -> ComponentHealth:
        """Check ledger gateway connectivity."""
        if self.ledger is None:
            return ComponentHealth("ledger", HealthStatus.UNHEALTHY, "No ledger gateway configured")

        start_time = time.time()
        try:
            health = await self.ledger.health_check()
        except GatewayError as e:
            latency_ms = (time.time() - start_time) * 1000
            logger.warning(f"Ledger health check failed: {e}")
            return ComponentHealth(
                "ledger", HealthStatus.UNHEALTHY, f"Ledger error: {e}", latency_ms=latency_ms
            )

        if not health.healthy:
            return ComponentHealth(
                "ledger",
                HealthStatus.UNHEALTHY,
                f"Ledger unhealthy: {health.error or 'unknown'}",
                latency_ms=health.latency_ms,
            )
        if health.latency_ms > self._latency_threshold_ms:
            return ComponentHealth(
                "ledger",
                HealthStatus.DEGRADED,
                f"Ledger slow ({health.latency_ms:.0f}ms)",
                latency_ms=health.latency_ms,
            )
        return ComponentHealth(
            "ledger", HealthStatus.HEALTHY, "Ledger is reachable", latency_ms=health.latency_ms
        )

    async def check_database(self) -> ComponentHealth:
        """Check database connectivity."""
        if self.db is None:
            return ComponentHealth("database", HealthStatus.HEALTHY, "In-memory store")

        start_time = time.time()
        ok = await self.db.health_check()
        latency_ms = (time.time() - start_time) * 1000
        if ok:
            return ComponentHealth(
                "database", HealthStatus.HEALTHY, "Database is accessible", latency_ms=latency_ms
            )
        return ComponentHealth(
            "database", HealthStatus.UNHEALTHY, "Database is not reachable", latency_ms=latency_ms
        )

    async def check_oracle(self, round_: Optional[Round], now: datetime) -> ComponentHealth:
        """Degraded/unhealthy when a seed request has waited too long."""
        tag = {
            PendingAction.AWAITING_ELIMINATION_SEED: PhaseTag.ELIMINATION,
            PendingAction.AWAITING_WINNER_SEED: PhaseTag.WINNER,
        }.get(round_.pending_action) if round_ else None
        if tag is None:
            return ComponentHealth("oracle", HealthStatus.HEALTHY, "No seed outstanding")

        request = await self.store.get_randomness_request(round_.round_id, tag)
        if request is None or request.fulfilled:
            return ComponentHealth("oracle", HealthStatus.HEALTHY, "No seed outstanding")

        waited = now - request.requested_at
        details = {"round_id": round_.round_id, "phase_tag": tag.value, "waited_seconds": waited.total_seconds()}
        if waited >= self.rules.randomness_timeout:
            return ComponentHealth(
                "oracle", HealthStatus.UNHEALTHY,
                f"{tag.value} seed for round {round_.round_id} outstanding for {waited}",
                details=details,
            )
        if waited >= self.rules.randomness_timeout / 2:
            return ComponentHealth(
                "oracle", HealthStatus.DEGRADED,
                f"{tag.value} seed for round {round_.round_id} slow ({waited})",
                details=details,
            )
        return ComponentHealth("oracle", HealthStatus.HEALTHY, "Seed request in flight", details=details)

    def expected_phase_duration(self, phase: RoundPhase) -> Optional[timedelta]:
        """How long a phase should last; None for phases with no expected end."""
        if phase is RoundPhase.WAITING:
            return self.rules.waiting_duration
        if phase is RoundPhase.SPECTATOR_BETTING:
            return self.rules.spectator_duration
        if phase in (RoundPhase.ARENA, RoundPhase.RESOLVING):
            return timedelta(0)
        return None

    def check_round_progression(self, round_: Optional[Round], now: datetime) -> ComponentHealth:
        """Detect halted rounds and rounds stuck past their phase's expected end."""
        if round_ is None:
            return ComponentHealth("round_progression", HealthStatus.HEALTHY, "No active round")

        details = {"round_id": round_.round_id, "phase": round_.phase.value}
        if round_.halted:
            return ComponentHealth(
                "round_progression", HealthStatus.UNHEALTHY,
                f"Round {round_.round_id} halted: {round_.halt_reason}",
                details=details,
            )

        expected = self.expected_phase_duration(round_.phase)
        if expected is None:
            return ComponentHealth("round_progression", HealthStatus.HEALTHY, f"Round {round_.round_id} {round_.phase.value}", details=details)

        overdue = now - round_.phase_started_at - expected
        details["overdue_seconds"] = max(0.0, overdue.total_seconds())
        if overdue >= self._stuck_critical:
            return ComponentHealth(
                "round_progression", HealthStatus.UNHEALTHY,
                f"Round {round_.round_id} stuck in {round_.phase.value} for {overdue} past expected",
                details=details,
            )
        if overdue >= self._stuck_grace:
            return ComponentHealth(
                "round_progression", HealthStatus.DEGRADED,
                f"Round {round_.round_id} slow in {round_.phase.value} ({overdue} past expected)",
                details=details,
            )
        return ComponentHealth(
            "round_progression", HealthStatus.HEALTHY,
            f"Round {round_.round_id} {round_.phase.value}", details=details,
        )

    async def check_all(
        self,
        now: datetime,
        ledger: Optional[ComponentHealth] = None,
        timeout: float = 5.0,
    ) -> AggregateHealth:
        """
        Check all components with timeout.

        Args:
            now: Current time
            ledger: Result of a ledger check already made this tick
            timeout: Maximum time for each I/O-bound check in seconds
        """
        pointer = await self.store.get_active_pointer()
        round_ = await self.store.get_round(pointer.round_id) if pointer.round_id is not None else None

        components = [ledger] if ledger is not None else []
        checks = [("database", self.check_database)]
        if ledger is None:
            checks.insert(0, ("ledger", self.check_ledger))

        for name, check_func in checks:
            try:
                components.append(await asyncio.wait_for(check_func(), timeout=timeout))
            except asyncio.TimeoutError:
                components.append(ComponentHealth(
                    component=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"{name} check timed out",
                ))

        components.append(await self.check_oracle(round_, now))
        components.append(self.check_round_progression(round_, now))

        return AggregateHealth(
            status=self._calculate_overall_status(components),
            components=components,
            checked_at=now,
        )

    def _calculate_overall_status(self, components: List[ComponentHealth]) -> HealthStatus:
        """Calculate overall status from component statuses."""
        statuses = [c.status for c in components]

        if HealthStatus.UNHEALTHY in statuses:
            return HealthStatus.UNHEALTHY
        if HealthStatus.DEGRADED in statuses:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    async def record(self, aggregate: AggregateHealth) -> list[SystemHealthRecord]:
        """Upsert one SystemHealthRecord per component plus the overall status."""
        entries = [(c.component, c.status, c.message, dict(c.details, latency_ms=c.latency_ms)) for c in aggregate.components]
        failing = [c.component for c in aggregate.components if c.status is not HealthStatus.HEALTHY]
        entries.append((OVERALL, aggregate.status, f"Not healthy: {', '.join(failing)}" if failing else None, {}))

        records = []
        for component, status, message, details in entries:
            previous = await self.store.get_health_record(component)
            healthy = status is HealthStatus.HEALTHY
            record = SystemHealthRecord(
                component=component,
                status=status,
                consecutive_errors=0 if healthy else (previous.consecutive_errors if previous else 0) + 1,
                last_error=(previous.last_error if previous else None) if healthy else message,
                checked_at=aggregate.checked_at,
                details=details,
            )
            await self.store.save_health_record(record)
            records.append(record)
        return records
