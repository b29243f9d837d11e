"""Schemas for bid payloads returned by the platform backend."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class BidRecord(BaseModel):
    """Lenient view over a backend bid; unknown fields are kept as extras."""

    bid_id: int | None = Field(default=None, validation_alias=AliasChoices("bidId", "bid_id", "id"))
    proposal_id: int | None = Field(
        default=None, validation_alias=AliasChoices("proposalId", "proposal_id")
    )
    milestones: list[Any] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("bid_id", "proposal_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @field_validator("milestones", mode="before")
    @classmethod
    def _coerce_milestones(cls, value: Any) -> list[Any]:
        if isinstance(value, (list, tuple)):
            return list(value)
        return []

    def milestone_at(self, index: int) -> Mapping[str, Any] | None:
        """Return the milestone at ``index`` or ``None`` if absent or not an object."""

        if index < 0 or index >= len(self.milestones):
            return None
        milestone = self.milestones[index]
        if isinstance(milestone, Mapping):
            return milestone
        return None


class SafeTxStatus(BaseModel):
    """Execution status of a multisig transaction."""

    is_executed: bool = Field(default=False, validation_alias=AliasChoices("isExecuted", "is_executed"))
    tx_hash: str | None = Field(default=None, validation_alias=AliasChoices("txHash", "tx_hash"))

    model_config = ConfigDict(populate_by_name=True)
