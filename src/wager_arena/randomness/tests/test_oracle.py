"""Tests for the HTTP randomness oracle client (transport mocked)."""
from unittest.mock import AsyncMock

import pytest

from wager_arena.ledger.client import GatewayError
from wager_arena.randomness import HttpRandomnessOracle
from wager_arena.storage import PhaseTag


@pytest.fixture
def client():
    return HttpRandomnessOracle("http://oracle.test")


class TestHttpRandomnessOracle:
    @pytest.mark.asyncio
    async def test_request_returns_id(self, client):
        client._request = AsyncMock(return_value={"request_id": 123})

        assert await client.request(9, PhaseTag.ELIMINATION) == "123"
        client._request.assert_awaited_once_with(
            "POST", "/requests", json={"round_id": 9, "phase_tag": "elimination"}
        )

    @pytest.mark.asyncio
    async def test_request_without_id_is_error(self, client):
        client._request = AsyncMock(return_value={})
        with pytest.raises(GatewayError):
            await client.request(9, PhaseTag.WINNER)

    @pytest.mark.asyncio
    async def test_pending_poll_returns_none(self, client):
        client._request = AsyncMock(return_value={"fulfilled": False})
        assert await client.poll("r1") is None

    @pytest.mark.asyncio
    async def test_fulfilled_seed_decoded(self, client):
        client._request = AsyncMock(return_value={"fulfilled": True, "seed": "0xdeadbeef"})
        assert await client.poll("r1") == bytes.fromhex("deadbeef")

    @pytest.mark.asyncio
    async def test_garbage_seed_is_error(self, client):
        client._request = AsyncMock(return_value={"fulfilled": True, "seed": "not-hex"})
        with pytest.raises(GatewayError):
            await client.poll("r1")
