"""Wiring of the milestone payment flow: queue, track, poll, notify."""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from paysync.config import Settings, get_settings
from paysync.schemas.payment import (
    MilestonePaymentRead,
    PaymentMessage,
    PaymentMessageType,
    PayMilestoneResponse,
    PendingListRead,
    SweepResult,
)
from paysync.services.backend_client import BackendClient
from paysync.services.bid_cache import BidCache
from paysync.services.payment_bus import InProcessPaymentBus, PaymentBus, parse_payment_message
from paysync.services.payment_state import derive_payment_state, make_key, parse_key
from paysync.services.pending_store import PendingKeyStore
from paysync.services.poller import PaymentPoller, PollerRegistry
from paysync.services.reconciler import Reconciler
from paysync.utils.errors import AuthError

logger = logging.getLogger(__name__)


class PaymentMessageListener:
    """Reacts to payment messages published by other consumers of the bus."""

    def __init__(
        self,
        store: PendingKeyStore,
        poller: PaymentPoller,
        *,
        on_removed: Callable[[str], None] | None = None,
    ) -> None:
        self.store = store
        self.poller = poller
        self.on_removed = on_removed

    async def __call__(self, raw: Any) -> None:
        message = parse_payment_message(raw)
        if message is None:
            logger.debug("Ignoring malformed payment message", extra={"payload": repr(raw)[:200]})
            return
        key = make_key(message.bid_id, message.milestone_index)
        if message.type is PaymentMessageType.QUEUED:
            self.store.add(key)
            self.poller.start(message.bid_id, message.milestone_index)
        else:
            self.store.remove(key)
            if self.on_removed is not None:
                self.on_removed(key)


class PaymentSyncService:
    """Entry point used by the HTTP layer and the scheduler."""

    def __init__(
        self,
        settings: Settings,
        client: BackendClient,
        store: PendingKeyStore,
        bus: PaymentBus,
        cache: BidCache,
        registry: PollerRegistry,
    ) -> None:
        self.settings = settings
        self.client = client
        self.store = store
        self.bus = bus
        self.cache = cache
        self.registry = registry
        self.auth_failures: dict[str, str] = {}
        self.reconciler = Reconciler(client, settings)
        self.poller = PaymentPoller(
            self.reconciler,
            store,
            bus,
            cache,
            registry,
            settings,
            on_auth_failure=self._remember_auth_failure,
        )
        self.listener = PaymentMessageListener(store, self.poller, on_removed=self._forget_auth_failure)
        self._unsubscribe: Callable[[], None] | None = None

    def _remember_auth_failure(self, key: str, exc: AuthError) -> None:
        self.auth_failures[key] = "Backend session expired. Please sign in again."

    def _forget_auth_failure(self, key: str) -> None:
        self.auth_failures.pop(key, None)

    def listen(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.bus.subscribe(self.listener)

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.registry.shutdown()
        await self.client.aclose()

    async def queue_payment(self, bid_id: int, milestone_index: int, method: str = "safe") -> PayMilestoneResponse:
        """Ask the backend to pay a milestone, then track it until it is paid."""

        backend = await self.client.pay_milestone(bid_id, milestone_index, method)
        key = make_key(bid_id, milestone_index)
        self.store.add(key)
        self._forget_auth_failure(key)
        # Our own listener sees this too; the registry makes the second start a no-op.
        task = self.poller.start(bid_id, milestone_index)
        await self.bus.publish(
            PaymentMessage(type=PaymentMessageType.QUEUED, bid_id=bid_id, milestone_index=milestone_index)
        )
        return PayMilestoneResponse(
            key=key,
            bid_id=bid_id,
            milestone_index=milestone_index,
            pending=True,
            polling=task is not None or self.registry.is_active(key),
            backend=backend,
        )

    def retry(self, bid_id: int, milestone_index: int) -> bool:
        """Restart polling by hand; returns False when a poller is already running."""

        key = make_key(bid_id, milestone_index)
        self._forget_auth_failure(key)
        if self.registry.is_active(key):
            return False
        self.store.add(key)
        return self.poller.start(bid_id, milestone_index) is not None

    async def describe(self, bid_id: int, milestone_index: int, *, refresh: bool = False) -> MilestonePaymentRead:
        key = make_key(bid_id, milestone_index)
        bid = None if refresh else self.cache.get(bid_id)
        if bid is None and refresh:
            bid = await self.client.get_bid(bid_id)
            self.cache.put(bid)
        state = None
        if bid is not None:
            state = derive_payment_state(
                bid.milestone_at(milestone_index), sniff=self.settings.SAFE_MARKER_SNIFF_ENABLED
            )
        last = self.registry.last_result(key)
        return MilestonePaymentRead(
            key=key,
            bid_id=bid_id,
            milestone_index=milestone_index,
            pending=self.store.is_pending(key),
            polling=self.registry.is_active(key),
            state=state,
            last_outcome=last.outcome if last else None,
            last_attempts=last.attempts if last else None,
            auth_error=self.auth_failures.get(key),
        )

    def pending(self) -> PendingListRead:
        return PendingListRead(keys=self.store.list_keys(), active_pollers=self.registry.active_keys())

    def sweep_stale(self) -> SweepResult:
        """Drop pending markers older than the configured age; running pollers are left alone."""

        max_age = self.settings.PENDING_MAX_AGE_SECONDS
        removed = self.store.sweep_stale(max_age)
        for key in removed:
            self._forget_auth_failure(key)
            self.registry.forget(key)
        return SweepResult(removed=removed, max_age_seconds=max_age)

    def resume_pending(self) -> list[str]:
        """Start a poller for every key still marked pending (e.g. after a restart)."""

        resumed: list[str] = []
        for key in self.store.list_keys():
            try:
                bid_id, milestone_index = parse_key(key)
            except ValueError:
                logger.warning("Dropping unreadable pending key", extra={"key": key})
                self.store.remove(key)
                continue
            if self.poller.start(bid_id, milestone_index) is not None:
                resumed.append(key)
        if resumed:
            logger.info("Resumed payment polling", extra={"keys": resumed})
        return resumed


def build_payment_service(settings: Settings | None = None) -> PaymentSyncService:
    """Assemble the service with the default collaborators."""

    settings = settings or get_settings()
    service = PaymentSyncService(
        settings=settings,
        client=BackendClient(settings),
        store=PendingKeyStore(max_age_seconds=settings.PENDING_MAX_AGE_SECONDS),
        bus=InProcessPaymentBus(),
        cache=BidCache(settings.BID_CACHE_TTL_SECONDS),
        registry=PollerRegistry(),
    )
    service.listen()
    return service


_service: PaymentSyncService | None = None


def get_payment_service() -> PaymentSyncService:
    """FastAPI dependency returning the process-wide service."""

    global _service
    if _service is None:
        _service = build_payment_service()
    return _service


async def close_payment_service() -> None:
    global _service
    if _service is not None:
        await _service.close()
        _service = None


__all__ = [
    "PaymentMessageListener",
    "PaymentSyncService",
    "build_payment_service",
    "get_payment_service",
    "close_payment_service",
]
