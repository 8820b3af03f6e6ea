"""
Randomness - external seed requests and single consumption.

Public API:
    RandomnessBroker - request / poll_fulfillment / consume_seed
    RandomnessOracle - protocol for the external oracle
    HttpRandomnessOracle - aiohttp binding
"""
from wager_arena.randomness.broker import RandomnessBroker
from wager_arena.randomness.oracle import HttpRandomnessOracle, RandomnessOracle

__all__ = [
    "RandomnessBroker",
    "RandomnessOracle",
    "HttpRandomnessOracle",
]
