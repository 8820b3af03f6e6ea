"""Tests for the HTTP ledger and transfer gateways."""
import pytest

from wager_arena.ledger import GatewayError, RoundSnapshot


class TestRoundSnapshot:
    def test_from_dict(self):
        snapshot = RoundSnapshot.from_dict(
            {"round_id": "4", "phase": "waiting", "events": [{"id": "e1"}]}
        )
        assert snapshot.round_id == 4
        assert snapshot.phase == "waiting"
        assert snapshot.events == [{"id": "e1"}]

    def test_no_round(self):
        snapshot = RoundSnapshot.from_dict({})
        assert snapshot.round_id is None
        assert snapshot.events == []


class TestHttpLedgerGateway:
    def test_base_url_normalized(self, ledger):
        assert ledger.base_url == "http://ledger.test"

    @pytest.mark.asyncio
    async def test_get_round_snapshot(self, ledger):
        ledger._request.return_value = {"round_id": 2, "events": []}

        snapshot = await ledger.get_round_snapshot()

        assert snapshot.round_id == 2
        ledger._request.assert_awaited_once_with("GET", "/round")

    @pytest.mark.asyncio
    async def test_submit_winner_returns_handle(self, ledger):
        ledger._request.return_value = {"tx": "0xabc"}

        assert await ledger.submit_winner(2, "alice") == "0xabc"
        args, kwargs = ledger._request.await_args
        assert args == ("POST", "/rounds/2/winner")
        assert kwargs["json"] == {"winner": "alice"}
        assert kwargs["idempotency_key"].startswith("winner-2-")

    @pytest.mark.asyncio
    async def test_resubmission_gets_fresh_key(self, ledger):
        ledger._request.return_value = {"tx": "0xabc"}

        await ledger.submit_close_betting(3)
        await ledger.submit_close_betting(3)

        first, second = (call.kwargs["idempotency_key"] for call in ledger._request.await_args_list)
        assert first.startswith("close-3-") and second.startswith("close-3-")
        assert first != second

    @pytest.mark.asyncio
    async def test_submit_without_handle_is_error(self, ledger):
        ledger._request.return_value = {}
        with pytest.raises(GatewayError):
            await ledger.submit_close_betting(2)

    @pytest.mark.asyncio
    async def test_await_confirmation_statuses(self, ledger):
        ledger._request.return_value = {"status": "pending"}
        assert await ledger.await_confirmation("0xabc") is False

        ledger._request.return_value = {"status": "confirmed"}
        assert await ledger.await_confirmation("0xabc") is True

        ledger._request.return_value = {"status": "failed", "error": "reverted"}
        with pytest.raises(GatewayError, match="reverted"):
            await ledger.await_confirmation("0xabc")

    @pytest.mark.asyncio
    async def test_health_check(self, ledger):
        ledger._request.return_value = {"ok": True}
        assert (await ledger.health_check()).healthy

        ledger._request.side_effect = GatewayError("down", status_code=503)
        health = await ledger.health_check()
        assert not health.healthy
        assert health.error == "down"


class TestHttpTransferGateway:
    @pytest.mark.asyncio
    async def test_successful_transfer(self, transfers, withdrawal):
        transfers._request.return_value = {"success": True, "reference": "ref-9"}

        result = await transfers.transfer(withdrawal)

        assert result.success and result.reference == "ref-9"
        transfers._request.assert_awaited_once_with(
            "POST",
            "/transfers",
            idempotency_key="tx-1",
            json={"id": "tx-1", "bettor": "alice", "kind": "withdrawal", "amount": 250},
        )

    @pytest.mark.asyncio
    async def test_gateway_error_becomes_failed_result(self, transfers, withdrawal):
        transfers._request.side_effect = GatewayError("timeout")

        result = await transfers.transfer(withdrawal)

        assert not result.success
        assert result.error == "timeout"
