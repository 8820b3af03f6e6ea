"""
Randomness oracle client.

The arena never generates its own randomness. Seeds come from an external
verifiable-randomness service; each (round, phase tag) gets its own request
and therefore its own independent seed.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

from wager_arena.ledger.client import GatewayError, JsonApiClient
from wager_arena.storage.models import PhaseTag

logger = logging.getLogger(__name__)


@runtime_checkable
class RandomnessOracle(Protocol):
    async def request(self, round_id: int, phase_tag: PhaseTag) -> str:
        """Ask for a seed. Returns the oracle's request id."""
        ...

    async def poll(self, request_id: str) -> Optional[bytes]:
        """The seed once fulfilled, else None."""
        ...


class HttpRandomnessOracle(JsonApiClient):
    """
    Oracle over HTTP.

    POST /requests {"round_id", "phase_tag"} -> {"request_id"}
    GET  /requests/{id}                      -> {"fulfilled": bool, "seed": "<hex>"}
    """

    async def request(self, round_id: int, phase_tag: PhaseTag) -> str:
        data = await self._request(
            "POST", "/requests", json={"round_id": round_id, "phase_tag": phase_tag.value}
        )
        request_id = (data or {}).get("request_id")
        if not request_id:
            raise GatewayError(f"Oracle response without request_id: {data!r}")
        logger.info(f"Requested {phase_tag.value} seed for round {round_id}: {request_id}")
        return str(request_id)

    async def poll(self, request_id: str) -> Optional[bytes]:
        data = await self._request("GET", f"/requests/{request_id}") or {}
        if not data.get("fulfilled"):
            return None
        seed_hex = data.get("seed") or ""
        try:
            seed = bytes.fromhex(seed_hex.removeprefix("0x"))
        except ValueError as e:
            raise GatewayError(f"Oracle returned a non-hex seed for {request_id}") from e
        if not seed:
            raise GatewayError(f"Oracle marked {request_id} fulfilled without a seed")
        return seed
