"""
Ledger - external ledger and value-transfer collaborators.

Public API:
    LedgerGateway, TransferGateway - protocols the crank and executors use
    HttpLedgerGateway, HttpTransferGateway - aiohttp bindings
    RoundSnapshot, LedgerHealth, TransferResult - gateway return types
    GatewayError, RateLimitError - transport errors

    Events:
        decode_event, LedgerEvent
        GameInitialized, BetPlaced, GameLocked, WinnerSelected, GameReset
        UnknownLedgerEvent, MalformedLedgerEvent
"""
from wager_arena.ledger.client import GatewayError, JsonApiClient, RateLimitError
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
from wager_arena.ledger.gateway import (
    HttpLedgerGateway,
    HttpTransferGateway,
    LedgerGateway,
    LedgerHealth,
    RoundSnapshot,
    TransferGateway,
    TransferResult,
)

__all__ = [
    # Transport
    "JsonApiClient",
    "GatewayError",
    "RateLimitError",
    # Gateways
    "LedgerGateway",
    "TransferGateway",
    "HttpLedgerGateway",
    "HttpTransferGateway",
    "RoundSnapshot",
    "LedgerHealth",
    "TransferResult",
    # Events
    "decode_event",
    "LedgerEvent",
    "GameInitialized",
    "BetPlaced",
    "GameLocked",
    "WinnerSelected",
    "GameReset",
    "UnknownLedgerEvent",
    "MalformedLedgerEvent",
]
