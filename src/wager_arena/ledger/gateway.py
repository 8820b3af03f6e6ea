"""
External ledger and transfer gateways.

The ledger is authoritative for round state: the crank reads a snapshot of
it every tick and submits the close-betting and winner transactions to it.
The transfer gateway moves value for payouts, deposits and withdrawals.

Both are protocols; the HTTP clients here are the production bindings.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from wager_arena.ledger.client import GatewayError, JsonApiClient
from wager_arena.storage.models import LedgerTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoundSnapshot:
    """The external ledger's view of the current round."""

    round_id: Optional[int]
    phase: Optional[str] = None
    winner: Optional[str] = None
    events: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoundSnapshot":
        round_id = data.get("round_id")
        return cls(
            round_id=int(round_id) if round_id is not None else None,
            phase=data.get("phase"),
            winner=data.get("winner"),
            events=list(data.get("events") or []),
        )


@dataclass(frozen=True)
class LedgerHealth:
    healthy: bool
    latency_ms: float
    error: Optional[str] = None


@dataclass(frozen=True)
class TransferResult:
    success: bool
    reference: Optional[str] = None
    error: Optional[str] = None


@runtime_checkable
class LedgerGateway(Protocol):
    async def get_round_snapshot(self) -> RoundSnapshot: ...

    async def submit_close_betting(self, round_id: int) -> str: ...

    async def submit_winner(self, round_id: int, winner: str) -> str: ...

    async def await_confirmation(self, tx_handle: str) -> bool:
        """True once confirmed, False while pending. Raises GatewayError if the tx failed."""
        ...

    async def health_check(self) -> LedgerHealth: ...


@runtime_checkable
class TransferGateway(Protocol):
    async def transfer(self, tx: LedgerTransaction) -> TransferResult:
        """Move ``tx.amount`` for ``tx.bettor``. ``tx.tx_id`` is the idempotency key."""
        ...


class HttpLedgerGateway(JsonApiClient):
    """
    Ledger gateway over HTTP.

    Endpoints:
        GET  /round                    -> snapshot
        POST /rounds/{id}/close        -> {"tx": handle}
        POST /rounds/{id}/winner       -> {"tx": handle}
        GET  /tx/{handle}              -> {"status": "pending"|"confirmed"|"failed"}
        GET  /health
    """

    async def get_round_snapshot(self) -> RoundSnapshot:
        data = await self._request("GET", "/round")
        return RoundSnapshot.from_dict(data or {})

    async def submit_close_betting(self, round_id: int) -> str:
        data = await self._request("POST", f"/rounds/{round_id}/close", idempotency_key=_submission_key("close", round_id))
        return _tx_handle(data)

    async def submit_winner(self, round_id: int, winner: str) -> str:
        data = await self._request(
            "POST", f"/rounds/{round_id}/winner", idempotency_key=_submission_key("winner", round_id), json={"winner": winner}
        )
        return _tx_handle(data)

    async def await_confirmation(self, tx_handle: str) -> bool:
        data = await self._request("GET", f"/tx/{tx_handle}")
        status = (data or {}).get("status")
        if status == "confirmed":
            return True
        if status == "failed":
            raise GatewayError(f"Transaction {tx_handle} failed: {data.get('error')}")
        return False

    async def health_check(self) -> LedgerHealth:
        start = time.monotonic()
        try:
            await self._request("GET", "/health")
        except GatewayError as e:
            return LedgerHealth(False, (time.monotonic() - start) * 1000, str(e))
        return LedgerHealth(True, (time.monotonic() - start) * 1000)


class HttpTransferGateway(JsonApiClient):
    """
    Value transfers over HTTP.

    POST /transfers {"id", "bettor", "kind", "amount"} -> {"success", "reference", "error"}
    """

    async def transfer(self, tx: LedgerTransaction) -> TransferResult:
        try:
            data = await self._request(
                "POST",
                "/transfers",
                idempotency_key=tx.tx_id,
                json={
                    "id": tx.tx_id,
                    "bettor": tx.bettor,
                    "kind": tx.kind.value,
                    "amount": tx.amount,
                },
            )
        except GatewayError as e:
            logger.warning(f"Transfer {tx.tx_id} failed: {e}")
            return TransferResult(success=False, error=str(e))
        data = data or {}
        return TransferResult(
            success=bool(data.get("success")),
            reference=data.get("reference"),
            error=data.get("error"),
        )


def _tx_handle(data: Any) -> str:
    handle = (data or {}).get("tx")
    if not handle:
        raise GatewayError(f"Ledger response without a transaction handle: {data!r}")
    return str(handle)


def _submission_key(action: str, round_id: int) -> str:
    # Fresh per submission: transport retries reuse it, a resubmission after
    # a failed transaction must not
    return f"{action}-{round_id}-{uuid.uuid4().hex[:12]}"
