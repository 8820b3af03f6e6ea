"""
FastAPI presentation layer.

Provides:
    - Read-only projections: active round, round by id, component health
    - The only mutating entry points: entry stakes, spectator stakes and
      payout claims

Entry stakes carry the ledger event id that recorded them. The id is
claimed in the processed-event table, so the crank skips the matching
``bet_placed`` event and the stake is never counted twice.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from wager_arena.core.errors import (
    ArenaError,
    AutoPayoutFailed,
    InvalidTransition,
    ResetNotAllowed,
    RoundNotFound,
    StakeRejected,
)
from wager_arena.core.projections import RoundView, active_round_view, round_view
from wager_arena.storage.models import Participant, Payout, ProcessedEvent, SpectatorStake

if TYPE_CHECKING:
    from wager_arena.core.state_machine import RoundStateMachine
    from wager_arena.execution.payouts import PayoutExecutor
    from wager_arena.monitoring.alerting import AlertManager

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    RoundNotFound: 404,
    InvalidTransition: 409,
    ResetNotAllowed: 409,
    StakeRejected: 422,
    AutoPayoutFailed: 502,
}


def status_code_for(error: ArenaError) -> int:
    for error_type, code in _STATUS_CODES.items():
        if isinstance(error, error_type):
            return code
    return 500


class StakeRequest(BaseModel):
    bettor: str
    amount: int = Field(gt=0)
    event_id: str
    round_id: Optional[int] = None
    is_bot: bool = False


class SpectatorStakeRequest(BaseModel):
    bettor: str
    target: str
    amount: int = Field(gt=0)
    stake_id: Optional[str] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def create_app(
    machine: "RoundStateMachine",
    payouts: "PayoutExecutor",
    clock: Callable[[], datetime] = _utc_now,
    round_lock: Optional[asyncio.Lock] = None,
    alerts: Optional["AlertManager"] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        machine: State machine that owns round transitions
        payouts: Executor used for claim-later payouts
        clock: Source of "now" (overridden in tests)
        round_lock: Lock shared with the crank; stake writes hold it so a
            tick never interleaves with them
        alerts: Alert manager whose delivery counts are reported by /health

    Returns:
        FastAPI application instance
    """
    store = machine.store
    lock = round_lock or asyncio.Lock()
    app = FastAPI(
        title="Wager Arena",
        description="Round state, stakes and payout claims",
        version="0.1.0",
    )

    @app.exception_handler(ArenaError)
    async def arena_error_handler(request: Request, exc: ArenaError):
        code = status_code_for(exc)
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=code,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    @app.get("/rounds/active", response_model=Optional[RoundView])
    async def get_active_round():
        """Current round, or null between rounds."""
        return await active_round_view(store, clock())

    @app.get("/rounds/{round_id}", response_model=RoundView)
    async def get_round(round_id: int):
        return await round_view(store, round_id, clock())

    @app.get("/health")
    async def get_health():
        """Latest persisted component health."""
        records = await store.list_health_records()
        body = {
            "components": {
                r.component: {
                    "status": r.status.value,
                    "consecutive_errors": r.consecutive_errors,
                    "last_error": r.last_error,
                    "checked_at": r.checked_at.isoformat(),
                }
                for r in records
            }
        }
        if alerts is not None:
            body["alerts"] = alerts.get_alert_stats()
        return body

    @app.post("/stakes", response_model=Participant)
    async def place_stake(body: StakeRequest):
        """Stake into the entry pool of the active round."""
        now = clock()
        async with lock:
            if await store.is_event_processed(body.event_id):
                raise InvalidTransition(
                    body.round_id, "place stake", "any", f"event {body.event_id} already applied"
                )
            participant = await machine.place_stake(
                body.bettor, body.amount, now, round_id=body.round_id, is_bot=body.is_bot
            )
            await store.mark_event_processed(
                ProcessedEvent(
                    event_id=body.event_id,
                    round_id=participant.round_id,
                    kind="bet_placed",
                    processed_at=now,
                )
            )
        return participant

    @app.post("/rounds/{round_id}/spectator-stakes", response_model=SpectatorStake)
    async def place_spectator_stake(round_id: int, body: SpectatorStakeRequest):
        async with lock:
            return await machine.place_spectator_stake(
                round_id, body.bettor, body.target, body.amount, clock(), stake_id=body.stake_id
            )

    @app.post("/rounds/{round_id}/claims/{bettor}", response_model=list[Payout])
    async def claim(round_id: int, bettor: str):
        """Retry the bettor's claim-pending payouts for a round."""
        return await payouts.claim(round_id, bettor, clock())

    return app
