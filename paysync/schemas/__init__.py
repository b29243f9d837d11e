"""Pydantic schemas package."""
from .bid import BidRecord, SafeTxStatus
from .payment import (
    MilestonePaymentRead,
    PaymentMessage,
    PaymentMessageType,
    PaymentState,
    PayMilestoneRequest,
    PayMilestoneResponse,
    PendingListRead,
    PollOutcome,
    PollResult,
    SweepResult,
)

__all__ = [
    "BidRecord",
    "SafeTxStatus",
    "MilestonePaymentRead",
    "PaymentMessage",
    "PaymentMessageType",
    "PaymentState",
    "PayMilestoneRequest",
    "PayMilestoneResponse",
    "PendingListRead",
    "PollOutcome",
    "PollResult",
    "SweepResult",
]
