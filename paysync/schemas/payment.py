"""Schemas for milestone payment tracking."""
from __future__ import annotations

import enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class PaymentState(str, enum.Enum):
    """Derived payment state of a milestone."""

    UNPAID = "unpaid"
    QUEUED = "queued"
    PAID = "paid"


class PollOutcome(str, enum.Enum):
    """Terminal states of a payment poller."""

    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    FAILED_AUTH = "failed_auth"
    CANCELLED = "cancelled"


class PaymentMessageType(str, enum.Enum):
    QUEUED = "queued"
    DONE = "done"


class PaymentMessage(BaseModel):
    """Message exchanged on the payment bus."""

    type: PaymentMessageType
    bid_id: int = Field(alias="bidId")
    milestone_index: int = Field(alias="milestoneIndex")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class PollResult(BaseModel):
    key: str
    bid_id: int
    milestone_index: int
    outcome: PollOutcome
    attempts: int
    state: PaymentState | None = None


class PayMilestoneRequest(BaseModel):
    method: Literal["safe", "eoa"] = "safe"


class PayMilestoneResponse(BaseModel):
    key: str
    bid_id: int
    milestone_index: int
    pending: bool
    polling: bool
    backend: dict[str, Any] = Field(default_factory=dict)


class MilestonePaymentRead(BaseModel):
    key: str
    bid_id: int
    milestone_index: int
    pending: bool
    polling: bool
    state: PaymentState | None = None
    last_outcome: PollOutcome | None = None
    last_attempts: int | None = None
    auth_error: str | None = None


class PendingListRead(BaseModel):
    keys: list[str]
    active_pollers: list[str]


class SweepResult(BaseModel):
    removed: list[str]
    max_age_seconds: float
