"""Multisig reconciliation: nudge the backend, then re-read the bid."""
from __future__ import annotations

import asyncio
import logging

from paysync.config import Settings
from paysync.schemas.bid import BidRecord
from paysync.services.backend_client import BackendClient
from paysync.services.payment_state import is_paid, read_safe_tx_hash
from paysync.utils.errors import AuthError, PaymentSyncError, TransientError

logger = logging.getLogger(__name__)


class Reconciler:
    """Produce a fresh view of a bid after asking the backend to reconcile Safe payouts."""

    def __init__(self, client: BackendClient, settings: Settings) -> None:
        self.client = client
        self.settings = settings

    async def _kick(self) -> None:
        # The reconcile call is an acknowledgement only; a failed kick does not stop the fetch.
        try:
            await self.client.reconcile_safe()
        except TransientError as exc:
            logger.warning(
                "Safe reconcile request failed",
                extra={"error": exc.message, "status_code": exc.status_code},
            )

    async def reconcile(self, bid_id: int, milestone_index: int | None = None) -> BidRecord:
        """Return the bid as the backend sees it after a reconcile pass.

        Raises :class:`AuthError` on 401/403 and :class:`TransientError` or
        :class:`MalformedDataError` when the bid cannot be fetched.
        """

        await self._kick()
        if self.settings.RECONCILE_SETTLE_SECONDS:
            await asyncio.sleep(self.settings.RECONCILE_SETTLE_SECONDS)
        bid = await self.client.get_bid(bid_id)

        if milestone_index is None or not self.settings.SAFE_TX_CHECK_ENABLED:
            return bid
        return await self._accelerate(bid, bid_id, milestone_index)

    async def _accelerate(self, bid: BidRecord, bid_id: int, milestone_index: int) -> BidRecord:
        milestone = bid.milestone_at(milestone_index)
        if milestone is None or is_paid(milestone):
            return bid
        safe_hash = read_safe_tx_hash(milestone)
        if safe_hash is None:
            return bid

        try:
            status = await self.client.get_safe_tx(safe_hash)
            if not (status.is_executed and status.tx_hash):
                return bid
            logger.info(
                "Safe transaction executed; reconciling again",
                extra={"bid_id": bid_id, "milestone_index": milestone_index, "safe_tx_hash": safe_hash},
            )
            await self._kick()
            return await self.client.get_bid(bid_id)
        except AuthError:
            raise
        except PaymentSyncError as exc:
            logger.warning(
                "Safe execution check failed",
                extra={"bid_id": bid_id, "safe_tx_hash": safe_hash, "error": exc.message},
            )
            return bid


__all__ = ["Reconciler"]
