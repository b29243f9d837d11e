"""Publish/subscribe channel for payment progress messages."""
from __future__ import annotations

import inspect
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Union

from paysync.schemas.payment import PaymentMessage, PaymentMessageType

logger = logging.getLogger(__name__)

PaymentHandler = Callable[[PaymentMessage], Union[None, Awaitable[None]]]

# Older clients prefix the message type with "mx:pay:".
_TYPE_ALIASES = {
    "queued": PaymentMessageType.QUEUED,
    "done": PaymentMessageType.DONE,
    "mx:pay:queued": PaymentMessageType.QUEUED,
    "mx:pay:done": PaymentMessageType.DONE,
}


def _finite_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        if math.isfinite(number) and number.is_integer():
            return int(number)
    return None


def parse_payment_message(raw: Any) -> PaymentMessage | None:
    """Validate an untrusted payload; return ``None`` for anything unusable."""

    if isinstance(raw, PaymentMessage):
        return raw
    if not isinstance(raw, Mapping):
        return None
    message_type = _TYPE_ALIASES.get(str(raw.get("type") or ""))
    bid_id = _finite_int(raw.get("bidId", raw.get("bid_id")))
    milestone_index = _finite_int(raw.get("milestoneIndex", raw.get("milestone_index")))
    if message_type is None or bid_id is None or milestone_index is None or milestone_index < 0:
        return None
    return PaymentMessage(type=message_type, bid_id=bid_id, milestone_index=milestone_index)


class PaymentBus(ABC):
    """Transport-agnostic channel carrying ``queued``/``done`` payment messages."""

    @abstractmethod
    async def publish(self, message: PaymentMessage) -> None: ...

    @abstractmethod
    def subscribe(self, handler: PaymentHandler) -> Callable[[], None]:
        """Register ``handler``; the returned callable unsubscribes it."""

    async def post_queued(self, bid_id: int, milestone_index: int) -> None:
        await self.publish(
            PaymentMessage(type=PaymentMessageType.QUEUED, bid_id=bid_id, milestone_index=milestone_index)
        )

    async def post_done(self, bid_id: int, milestone_index: int) -> None:
        await self.publish(
            PaymentMessage(type=PaymentMessageType.DONE, bid_id=bid_id, milestone_index=milestone_index)
        )


class NullPaymentBus(PaymentBus):
    """Bus for single-consumer deployments: messages go nowhere."""

    async def publish(self, message: PaymentMessage) -> None:
        return None

    def subscribe(self, handler: PaymentHandler) -> Callable[[], None]:
        return lambda: None


class InProcessPaymentBus(PaymentBus):
    """Delivers every message to the handlers registered in this process."""

    def __init__(self) -> None:
        self._handlers: list[PaymentHandler] = []

    def subscribe(self, handler: PaymentHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    async def publish(self, message: PaymentMessage) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Payment message handler failed",
                    extra={"message_type": message.type.value, "bid_id": message.bid_id},
                )


__all__ = [
    "PaymentBus",
    "PaymentHandler",
    "NullPaymentBus",
    "InProcessPaymentBus",
    "parse_payment_message",
]
