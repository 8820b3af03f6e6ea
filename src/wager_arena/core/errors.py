"""
Arena error taxonomy.

Two families matter to the crank:
    - Retryable: LedgerSubmissionFailed. Logged at WARNING, counted in
      SystemHealthRecord, retried on a later tick with backoff.
    - Fatal for a round: InvariantViolation, InsufficientPoolFunds,
      SeedAlreadyConsumed. The round is halted until an operator resumes it.

Everything else is rejected back to the caller that attempted the action.
"""
from __future__ import annotations

from typing import Optional


class ArenaError(Exception):
    """Base class for all arena errors."""

    fatal: bool = False
    retryable: bool = False


class RoundNotFound(ArenaError):
    def __init__(self, round_id: Optional[int]):
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


class InvalidTransition(ArenaError):
    """An action was attempted against a round not in the required phase."""

    def __init__(self, round_id: Optional[int], action: str, phase: str, detail: str = ""):
        self.round_id = round_id
        self.action = action
        self.phase = phase
        message = f"Cannot {action} round {round_id} in phase {phase}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class StakeRejected(ArenaError):
    """A stake failed validation (amount, capacity, window, spectator rules)."""

    def __init__(self, bettor: str, reason: str):
        self.bettor = bettor
        self.reason = reason
        super().__init__(f"Stake from {bettor} rejected: {reason}")


class DuplicateRandomnessRequest(ArenaError):
    def __init__(self, round_id: int, phase_tag: str):
        self.round_id = round_id
        self.phase_tag = phase_tag
        super().__init__(f"Randomness already requested for round {round_id} ({phase_tag})")


class SeedNotFulfilled(ArenaError):
    def __init__(self, round_id: int, phase_tag: str):
        self.round_id = round_id
        self.phase_tag = phase_tag
        super().__init__(f"Seed for round {round_id} ({phase_tag}) is not fulfilled")


class SeedAlreadyConsumed(ArenaError):
    """A second consumption of the same seed. Never reuse randomness."""

    fatal = True

    def __init__(self, round_id: int, phase_tag: str):
        self.round_id = round_id
        self.phase_tag = phase_tag
        super().__init__(f"Seed for round {round_id} ({phase_tag}) was already consumed")


class InsufficientPoolFunds(ArenaError):
    """Settlement would pay out more than the payable pool. Never partially pay."""

    fatal = True

    def __init__(self, pool: str, payable: int, requested: int):
        self.pool = pool
        self.payable = payable
        self.requested = requested
        super().__init__(
            f"Insufficient {pool} pool funds: payable {payable}, payouts {requested}"
        )


class LedgerSubmissionFailed(ArenaError):
    """Submitting or confirming an external ledger transaction failed."""

    retryable = True

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Ledger {operation} failed: {reason}")


class AutoPayoutFailed(ArenaError):
    """The value transfer for a computed payout failed; falls back to claim."""

    def __init__(self, round_id: int, bettor: str, amount: int, reason: str):
        self.round_id = round_id
        self.bettor = bettor
        self.amount = amount
        self.reason = reason
        super().__init__(
            f"Auto payout of {amount} to {bettor} for round {round_id} failed: {reason}"
        )


class InvariantViolation(ArenaError):
    """A structural invariant broke. Halts the round for manual intervention."""

    fatal = True

    def __init__(self, round_id: Optional[int], detail: str):
        self.round_id = round_id
        self.detail = detail
        super().__init__(f"Invariant violated for round {round_id}: {detail}")


class ResetNotAllowed(ArenaError):
    def __init__(self, round_id: int, reason: str):
        self.round_id = round_id
        self.reason = reason
        super().__init__(f"Round {round_id} cannot be reset: {reason}")
