"""Pending milestone payment markers."""
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PendingPayment(Base):
    """A milestone payment that was queued and has not been observed paid yet."""

    __tablename__ = "pending_payments"
    __table_args__ = (
        CheckConstraint("milestone_index >= 0", name="ck_pending_payment_index_non_negative"),
        Index("ix_pending_payments_queued_at", "queued_at"),
        Index("ix_pending_payments_bid", "bid_id", "milestone_index"),
    )

    key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    bid_id: Mapped[int] = mapped_column(Integer, nullable=False)
    milestone_index: Mapped[int] = mapped_column(Integer, nullable=False)
    queued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
