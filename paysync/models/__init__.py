"""ORM models package."""
from .base import Base
from .pending_payment import PendingPayment

__all__ = [
    "Base",
    "PendingPayment",
]
