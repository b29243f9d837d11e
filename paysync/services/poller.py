"""Poll the backend until a queued milestone payment is observed paid."""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable

from paysync.config import Settings
from paysync.schemas.payment import PaymentState, PollOutcome, PollResult
from paysync.services.bid_cache import BidCache
from paysync.services.payment_bus import PaymentBus
from paysync.services.payment_state import derive_payment_state, make_key
from paysync.services.pending_store import PendingKeyStore
from paysync.services.reconciler import Reconciler
from paysync.utils.errors import AuthError, MalformedDataError, TransientError

logger = logging.getLogger(__name__)

AuthFailureHook = Callable[[str, AuthError], None]

MAX_REMEMBERED_RESULTS = 1000


class PollerRegistry:
    """Process-local registry of running pollers, keyed by pending key.

    ``claim`` and ``release`` never await, so two coroutines cannot both
    claim the same key.
    """

    def __init__(self, max_results: int = MAX_REMEMBERED_RESULTS) -> None:
        self._active: dict[str, asyncio.Task | None] = {}
        self._results: OrderedDict[str, PollResult] = OrderedDict()
        self.max_results = max_results

    def claim(self, key: str) -> bool:
        if key in self._active:
            return False
        self._active[key] = None
        return True

    def attach(self, key: str, task: asyncio.Task) -> None:
        self._active[key] = task

    def release(self, key: str, task: asyncio.Task | None = None) -> None:
        """Free ``key``; with ``task`` given, only if that task still holds it."""

        if task is not None and self._active.get(key) is not task:
            return
        self._active.pop(key, None)

    def holds(self, key: str, task: asyncio.Task) -> bool:
        return self._active.get(key) is task

    def is_active(self, key: str) -> bool:
        return key in self._active

    def active_keys(self) -> list[str]:
        return sorted(self._active)

    def cancel(self, key: str) -> bool:
        task = self._active.get(key)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        """Cancel every running poller and wait for them to unwind."""

        tasks = [task for task in self._active.values() if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def record_result(self, result: PollResult) -> None:
        self._results.pop(result.key, None)
        self._results[result.key] = result
        while len(self._results) > self.max_results:
            self._results.popitem(last=False)

    def forget(self, key: str) -> None:
        self._results.pop(key, None)

    def last_result(self, key: str) -> PollResult | None:
        return self._results.get(key)


class PaymentPoller:
    """Drive one (bid, milestone) pair until it is paid or the retry budget runs out.

    Each attempt reconciles and re-reads the bid. Transient and malformed
    responses use up an attempt and are only logged. An auth failure stops the
    poll at once and leaves the pending marker in place, since the payment may
    still be in flight. Running out of attempts clears the marker so the
    payment can be retried by hand.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        store: PendingKeyStore,
        bus: PaymentBus,
        cache: BidCache,
        registry: PollerRegistry,
        settings: Settings,
        *,
        on_auth_failure: AuthFailureHook | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.reconciler = reconciler
        self.store = store
        self.bus = bus
        self.cache = cache
        self.registry = registry
        self.settings = settings
        self.on_auth_failure = on_auth_failure
        self._sleep = sleep

    def start(
        self,
        bid_id: int,
        milestone_index: int,
        *,
        max_tries: int | None = None,
        interval: float | None = None,
    ) -> asyncio.Task | None:
        """Spawn a background poller; ``None`` when one is already running for the key."""

        key = make_key(bid_id, milestone_index)
        tries = self._budget(max_tries)
        if not self.registry.claim(key):
            logger.debug("Payment poller already running", extra={"key": key})
            return None
        task = asyncio.create_task(
            self._run(bid_id, milestone_index, key, tries, interval),
            name=f"payment-poller-{key}",
        )
        self.registry.attach(key, task)
        task.add_done_callback(lambda done: self._on_task_done(bid_id, milestone_index, key, done))
        task.add_done_callback(_log_task_failure)
        return task

    async def poll_until_paid(
        self,
        bid_id: int,
        milestone_index: int,
        *,
        max_tries: int | None = None,
        interval: float | None = None,
    ) -> PollResult | None:
        """Poll inline; ``None`` when another poller already holds the key."""

        key = make_key(bid_id, milestone_index)
        tries = self._budget(max_tries)
        if not self.registry.claim(key):
            logger.debug("Payment poller already running", extra={"key": key})
            return None
        return await self._run(bid_id, milestone_index, key, tries, interval)

    def _budget(self, max_tries: int | None) -> int:
        tries = self.settings.POLL_MAX_TRIES if max_tries is None else max_tries
        if tries < 1:
            raise ValueError("max_tries must be >= 1")
        return tries

    def _on_task_done(self, bid_id: int, milestone_index: int, key: str, task: asyncio.Task) -> None:
        # A task cancelled before its first step never reaches the release in _run.
        if not self.registry.holds(key, task):
            return
        self.registry.release(key, task)
        if task.cancelled():
            self.registry.record_result(
                PollResult(
                    key=key,
                    bid_id=bid_id,
                    milestone_index=milestone_index,
                    outcome=PollOutcome.CANCELLED,
                    attempts=0,
                )
            )

    def _surface_auth_failure(self, key: str, exc: AuthError) -> None:
        if self.on_auth_failure is None:
            return
        try:
            self.on_auth_failure(key, exc)
        except Exception:  # noqa: BLE001
            logger.exception("Auth failure hook raised", extra={"key": key})

    def _record_paid(self, bid_id: int, milestone_index: int, key: str, bid, milestone) -> None:
        self.store.remove(key)
        if self.cache.merge_milestone(bid_id, milestone_index, milestone) is None:
            self.cache.put(bid)

    async def _run(
        self,
        bid_id: int,
        milestone_index: int,
        key: str,
        tries: int,
        interval: float | None,
    ) -> PollResult:
        delay = self.settings.POLL_INTERVAL_SECONDS if interval is None else interval
        attempts = 0
        state: PaymentState | None = None

        def _result(outcome: PollOutcome) -> PollResult:
            result = PollResult(
                key=key,
                bid_id=bid_id,
                milestone_index=milestone_index,
                outcome=outcome,
                attempts=attempts,
                state=state,
            )
            self.registry.record_result(result)
            return result

        logger.info(
            "Starting payment status polling",
            extra={"key": key, "max_tries": tries, "interval_seconds": delay},
        )
        try:
            for attempt in range(1, tries + 1):
                attempts = attempt
                try:
                    bid = await self.reconciler.reconcile(bid_id, milestone_index)
                except AuthError as exc:
                    logger.error(
                        "Backend session rejected; payment polling stopped",
                        extra={"key": key, "attempt": attempt, "status_code": exc.status_code},
                    )
                    result = _result(PollOutcome.FAILED_AUTH)
                    self._surface_auth_failure(key, exc)
                    return result
                except (TransientError, MalformedDataError) as exc:
                    logger.warning(
                        "Payment status check failed; retrying",
                        extra={"key": key, "attempt": attempt, "max_tries": tries, "error": exc.message},
                    )
                else:
                    milestone = bid.milestone_at(milestone_index)
                    state = derive_payment_state(milestone, sniff=self.settings.SAFE_MARKER_SNIFF_ENABLED)
                    if state is PaymentState.PAID and milestone is not None:
                        self._record_paid(bid_id, milestone_index, key, bid, milestone)
                        await self.bus.post_done(bid_id, milestone_index)
                        logger.info("Milestone payment confirmed", extra={"key": key, "attempt": attempt})
                        return _result(PollOutcome.SUCCEEDED)
                    logger.debug(
                        "Milestone not paid yet",
                        extra={"key": key, "attempt": attempt, "state": state.value},
                    )

                if attempt < tries:
                    await self._sleep(delay)

            self.store.remove(key)
            logger.warning(
                "Payment not observed paid within the retry budget",
                extra={"key": key, "attempts": attempts, "state": state.value if state else None},
            )
            return _result(PollOutcome.EXHAUSTED)
        except asyncio.CancelledError:
            logger.info("Payment polling cancelled", extra={"key": key, "attempts": attempts})
            _result(PollOutcome.CANCELLED)
            raise
        finally:
            self.registry.release(key)


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Payment poller crashed", exc_info=exc, extra={"task": task.get_name()})


__all__ = ["PaymentPoller", "PollerRegistry", "AuthFailureHook"]
