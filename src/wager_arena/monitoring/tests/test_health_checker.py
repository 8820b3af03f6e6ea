"""
Tests for component health checks.

The crank records these after every tick; the API serves them.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from wager_arena.ledger import GatewayError, LedgerHealth
from wager_arena.monitoring import HealthStatus
from wager_arena.storage import PendingAction, PhaseTag, RandomnessRequest, RoundPhase


class TestLedgerCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, health_checker):
        result = await health_checker.check_ledger()

        assert result.status is HealthStatus.HEALTHY
        assert result.latency_ms == 12.0

    @pytest.mark.asyncio
    async def test_slow_ledger_degraded(self, health_checker, mock_ledger):
        mock_ledger.health_check = AsyncMock(return_value=LedgerHealth(True, latency_ms=5000.0))

        assert (await health_checker.check_ledger()).status is HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_unreachable_ledger_unhealthy(self, health_checker, mock_ledger):
        mock_ledger.health_check = AsyncMock(side_effect=GatewayError("connection refused"))

        result = await health_checker.check_ledger()

        assert result.status is HealthStatus.UNHEALTHY
        assert "connection refused" in result.message


class TestRoundProgression:
    def test_no_active_round(self, health_checker, now):
        assert health_checker.check_round_progression(None, now).status is HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_within_expected_duration(self, health_checker, make_active_round, now):
        round_ = await make_active_round(now)

        result = health_checker.check_round_progression(round_, now + timedelta(seconds=20))

        assert result.status is HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_stuck_round(self, health_checker, make_active_round, now):
        round_ = await make_active_round(now)

        slow = health_checker.check_round_progression(round_, now + timedelta(minutes=10))
        stuck = health_checker.check_round_progression(round_, now + timedelta(hours=2))

        assert slow.status is HealthStatus.DEGRADED
        assert stuck.status is HealthStatus.UNHEALTHY
        assert stuck.details["round_id"] == 1

    @pytest.mark.asyncio
    async def test_halted_round_unhealthy(self, health_checker, make_active_round, now):
        round_ = await make_active_round(now, halted=True, halt_reason="operator")

        result = health_checker.check_round_progression(round_, now)

        assert result.status is HealthStatus.UNHEALTHY
        assert "operator" in result.message

    @pytest.mark.asyncio
    async def test_finished_round_has_no_deadline(self, health_checker, make_active_round, now):
        round_ = await make_active_round(now, phase=RoundPhase.FINISHED)

        result = health_checker.check_round_progression(round_, now + timedelta(days=3))

        assert result.status is HealthStatus.HEALTHY


class TestOracleCheck:
    @pytest.mark.asyncio
    async def test_outstanding_seed_ages(self, health_checker, store, make_active_round, now):
        round_ = await make_active_round(
            now, phase=RoundPhase.ARENA, pending_action=PendingAction.AWAITING_ELIMINATION_SEED
        )
        await store.insert_randomness_request(RandomnessRequest(
            round_id=1, phase_tag=PhaseTag.ELIMINATION, oracle_request_id="r", requested_at=now,
        ))

        fresh = await health_checker.check_oracle(round_, now + timedelta(minutes=1))
        slow = await health_checker.check_oracle(round_, now + timedelta(minutes=6))
        timed_out = await health_checker.check_oracle(round_, now + timedelta(minutes=11))

        assert fresh.status is HealthStatus.HEALTHY
        assert slow.status is HealthStatus.DEGRADED
        assert timed_out.status is HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_nothing_outstanding(self, health_checker, make_active_round, now):
        round_ = await make_active_round(now)

        assert (await health_checker.check_oracle(round_, now)).status is HealthStatus.HEALTHY


class TestCheckAllAndRecord:
    @pytest.mark.asyncio
    async def test_overall_is_worst_component(self, health_checker, make_active_round, now):
        await make_active_round(now, halted=True, halt_reason="x")

        overall = await health_checker.check_all(now)

        assert overall.status is HealthStatus.UNHEALTHY
        assert overall.get("ledger").status is HealthStatus.HEALTHY
        assert overall.get("database").message == "In-memory store"
        assert overall.checked_at == now

    @pytest.mark.asyncio
    async def test_reuses_ledger_result(self, health_checker, mock_ledger, now):
        ledger = await health_checker.check_ledger()
        mock_ledger.health_check.reset_mock()

        await health_checker.check_all(now, ledger=ledger)

        mock_ledger.health_check.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_record_counts_consecutive_errors(
        self, health_checker, store, make_active_round, now
    ):
        await make_active_round(now, halted=True, halt_reason="x")

        await health_checker.record(await health_checker.check_all(now))
        await health_checker.record(await health_checker.check_all(now))

        progression = await store.get_health_record("round_progression")
        assert progression.consecutive_errors == 2
        assert "halted" in progression.last_error

        ledger = await store.get_health_record("ledger")
        assert ledger.consecutive_errors == 0

        overall = await store.get_health_record("overall")
        assert overall.status is HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_recovery_resets_counter(self, health_checker, store, make_active_round, now):
        round_ = await make_active_round(now, halted=True, halt_reason="x")
        await health_checker.record(await health_checker.check_all(now))

        round_.halted = False
        await store.save_round(round_)
        await health_checker.record(await health_checker.check_all(now))

        record = await store.get_health_record("round_progression")
        assert record.status is HealthStatus.HEALTHY
        assert record.consecutive_errors == 0
