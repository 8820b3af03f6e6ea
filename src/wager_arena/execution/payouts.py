"""
Payout Executor - moves settled value to bettors.

Each pending Payout line is sent through the TransferGateway. A failed
transfer never aborts the round's settlement: that line degrades to
``claim_pending`` (AutoPayoutFailed is logged and alerted) and the bettor
or an operator retries it later through ``claim``.

The payout's transfer id is derived from (round, pool, stake), so retries
are idempotent at the gateway.

The house fee goes out the same way, once per round, to the configured
house account. A failed fee transfer leaves ``house_collected`` unset and
housekeeping retries it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from wager_arena.core.errors import AutoPayoutFailed, InvariantViolation, RoundNotFound
from wager_arena.ledger.client import GatewayError
from wager_arena.ledger.gateway import TransferGateway
from wager_arena.storage.models import (
    LedgerTransaction,
    Payout,
    PayoutStatus,
    Round,
    SettlementStatus,
    TransactionKind,
)
from wager_arena.storage.protocol import RoundStore

logger = logging.getLogger(__name__)


@dataclass
class PayoutSummary:
    round_id: int
    paid: int = 0
    claim_pending: int = 0
    amount_paid: int = 0
    amount_pending: int = 0


def payout_tx_id(payout: Payout) -> str:
    return f"payout-{payout.round_id}-{payout.pool.value}-{payout.stake_ref}"


def house_tx_id(round_id: int) -> str:
    return f"house-{round_id}"


class PayoutExecutor:
    """
    Auto-payout with claim-later fallback.

    Usage:
        executor = PayoutExecutor(store, transfer_gateway)
        summary = await executor.execute(round_id, now)
        ...
        await executor.claim(round_id, "alice", now)
    """

    def __init__(
        self,
        store: RoundStore,
        transfer: TransferGateway,
        on_failure: Optional[Callable[[AutoPayoutFailed], None]] = None,
        house_account: str = "house",
    ) -> None:
        self.store = store
        self.transfer = transfer
        self.house_account = house_account
        self._on_failure = on_failure

    async def _send(self, payout: Payout, now: datetime) -> Optional[str]:
        """Attempt one transfer. Returns an error message, or None on success."""
        tx = LedgerTransaction(
            tx_id=payout_tx_id(payout),
            bettor=payout.bettor,
            kind=TransactionKind.PAYOUT,
            amount=payout.amount,
            queued_at=now,
        )
        payout.attempts += 1
        payout.updated_at = now
        try:
            result = await self.transfer.transfer(tx)
        except GatewayError as e:
            error = str(e)
        else:
            if result.success:
                payout.status = PayoutStatus.PAID
                payout.transfer_ref = result.reference
                payout.last_error = None
                return None
            error = result.error or "transfer rejected"

        payout.status = PayoutStatus.CLAIM_PENDING
        payout.last_error = error
        return error

    async def execute(self, round_id: int, now: datetime) -> PayoutSummary:
        """Send every pending payout for the round and record the settlement status."""
        round_ = await self.store.get_round(round_id)
        if round_ is None:
            raise RoundNotFound(round_id)
        if round_.settlement_status is SettlementStatus.PENDING:
            raise InvariantViolation(round_id, "payouts executed before settlement was computed")

        summary = PayoutSummary(round_id=round_id)
        for payout in await self.store.get_payouts(round_id):
            if payout.status is PayoutStatus.PENDING:
                error = await self._send(payout, now)
                await self.store.save_payout(payout)
                if error is not None:
                    failure = AutoPayoutFailed(round_id, payout.bettor, payout.amount, error)
                    logger.warning(f"{failure}; left for claim")
                    if self._on_failure is not None:
                        self._on_failure(failure)
            if payout.status is PayoutStatus.PAID:
                summary.paid += 1
                summary.amount_paid += payout.amount
            else:
                summary.claim_pending += 1
                summary.amount_pending += payout.amount

        await self._update_round_status(round_)
        await self.collect_house_fee(round_id, now)
        logger.info(
            f"Round {round_id} payouts: {summary.paid} paid ({summary.amount_paid}), "
            f"{summary.claim_pending} claim pending ({summary.amount_pending})"
        )
        return summary

    async def claim(self, round_id: int, bettor: str, now: datetime) -> list[Payout]:
        """
        Retry a bettor's claim-pending payouts.

        Raises:
            AutoPayoutFailed: a transfer failed again (the payout stays claimable)
        """
        round_ = await self.store.get_round(round_id)
        if round_ is None:
            raise RoundNotFound(round_id)

        claimed = []
        for payout in await self.store.get_payouts(round_id, bettor):
            if payout.status is not PayoutStatus.CLAIM_PENDING:
                continue
            error = await self._send(payout, now)
            await self.store.save_payout(payout)
            if error is not None:
                raise AutoPayoutFailed(round_id, bettor, payout.amount, error)
            logger.info(f"Round {round_id}: claim of {payout.amount} by {bettor} paid")
            claimed.append(payout)

        await self._update_round_status(round_)
        return claimed

    async def collect_house_fee(self, round_id: int, now: datetime) -> bool:
        """
        Transfer the round's house fee to the house account, at most once.

        Returns:
            True once the fee is collected (or nothing was owed), False if the
            transfer failed and must be retried
        """
        round_ = await self.store.get_round(round_id)
        if round_ is None:
            raise RoundNotFound(round_id)
        if round_.settlement_status is SettlementStatus.PENDING:
            raise InvariantViolation(round_id, "house fee collected before settlement was computed")
        if round_.house_collected:
            return True

        amount = round_.house_fee_collected
        if amount > 0:
            tx = LedgerTransaction(
                tx_id=house_tx_id(round_id),
                bettor=self.house_account,
                kind=TransactionKind.HOUSE_FEE,
                amount=amount,
                queued_at=now,
            )
            try:
                result = await self.transfer.transfer(tx)
                error = None if result.success else (result.error or "transfer rejected")
            except GatewayError as e:
                error = str(e)
            if error is not None:
                failure = AutoPayoutFailed(round_id, self.house_account, amount, error)
                logger.warning(f"{failure}; house fee left for collection")
                if self._on_failure is not None:
                    self._on_failure(failure)
                return False

        current = await self.store.get_round(round_id) or round_
        current.house_collected = True
        await self.store.save_round(current)
        logger.info(f"Round {round_id}: house fee {amount} collected to {self.house_account}")
        return True

    async def _update_round_status(self, round_: Round) -> None:
        payouts = await self.store.get_payouts(round_.round_id)
        if any(p.status is not PayoutStatus.PAID for p in payouts):
            status = SettlementStatus.CLAIM_PENDING
        elif round_.cancelled or any(p.refund for p in payouts):
            status = SettlementStatus.REFUNDED
        else:
            status = SettlementStatus.PAID

        # Re-read: the crank may have moved the round on since the caller loaded it
        current = await self.store.get_round(round_.round_id) or round_
        if current.settlement_status is not status:
            current.settlement_status = status
            await self.store.save_round(current)
