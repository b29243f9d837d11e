"""Milestone payment state derivation.

The backend has shipped several milestone shapes over time: direct transfers
record ``paymentTxHash``/``paymentDate`` (or the older ``txHash``/``hash``/
``paidAt``), multisig payouts record ``safe*`` markers, and one backend
version spells everything in snake_case. Call sites never inspect those raw
fields; they go through :func:`derive_payment_state`.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from paysync.schemas.payment import PaymentState

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"paid", "executed", "complete", "completed"})
SAFE_STATUSES = frozenset({"queued", "pending", "submitted", "awaiting_exec", "success", "executed"})

_PAID_FIELDS = (
    "paymentTxHash",
    "payment_tx_hash",
    "paymentDate",
    "payment_date",
    "txHash",
    "tx_hash",
    "hash",
    "paidAt",
    "paid_at",
)
_PAID_FLAGS = ("paid", "isPaid", "is_paid")
_SAFE_HASH_FIELDS = (
    "safeTxHash",
    "safe_tx_hash",
    "safePaymentTxHash",
    "safe_payment_tx_hash",
)
_SAFE_FIELDS = _SAFE_HASH_FIELDS + (
    "safeNonce",
    "safe_nonce",
    "safeExecutedAt",
    "safe_executed_at",
)
_SAFE_STATUS_FIELDS = ("safeStatus", "safe_status")
_SNIFF_MARKERS = ('"safe', "gnosis")

_KEY_RE = re.compile(r"^(\d+)-(\d+)$")


def make_key(bid_id: int, milestone_index: int) -> str:
    """Render the pending key of a (bid, milestone) pair."""

    return f"{int(bid_id)}-{int(milestone_index)}"


def parse_key(key: str) -> tuple[int, int]:
    """Split a pending key back into ``(bid_id, milestone_index)``."""

    match = _KEY_RE.match(key.strip()) if isinstance(key, str) else None
    if match is None:
        raise ValueError(f"Invalid pending key: {key!r}")
    return int(match.group(1)), int(match.group(2))


def _is_set(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return bool(value)
    return True


def _truthy(value: Any) -> bool:
    # Paid markers follow plain truthiness: a zero hash or date is not a payment.
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    return _is_set(value)


def _as_mapping(milestone: Any) -> Mapping[str, Any] | None:
    if isinstance(milestone, Mapping):
        return milestone
    dump = getattr(milestone, "model_dump", None)
    if callable(dump):
        dumped = dump(by_alias=True)
        if isinstance(dumped, Mapping):
            return dumped
    return None


def _lowered(m: Mapping[str, Any], *fields: str) -> str:
    for field in fields:
        value = m.get(field)
        if value is not None:
            return str(value).strip().lower()
    return ""


def _paid(m: Mapping[str, Any]) -> bool:
    if any(_truthy(m.get(field)) for field in _PAID_FIELDS):
        return True
    if any(m.get(flag) is True for flag in _PAID_FLAGS):
        return True
    return _lowered(m, "status") in PAID_STATUSES


def _sniff(m: Mapping[str, Any]) -> bool:
    # Last resort for marker fields we do not know about yet; unset entries are ignored.
    present = {str(k): v for k, v in m.items() if _is_set(v)}
    try:
        raw = json.dumps(present, default=str).lower()
    except (TypeError, ValueError):
        return False
    return any(marker in raw for marker in _SNIFF_MARKERS)


def _queued(m: Mapping[str, Any], sniff: bool) -> bool:
    if any(_is_set(m.get(field)) for field in _SAFE_FIELDS):
        return True
    if _lowered(m, *_SAFE_STATUS_FIELDS) in SAFE_STATUSES:
        return True
    if _lowered(m, "status") in SAFE_STATUSES:
        return True
    return sniff and _sniff(m)


def derive_payment_state(milestone: Any, *, sniff: bool = True) -> PaymentState:
    """Classify a milestone record as unpaid, queued in the multisig, or paid.

    Any field may be missing, ``None`` or of an unexpected type. Input that is
    not a mapping is treated as unpaid. This function never raises.
    """

    try:
        m = _as_mapping(milestone)
        if m is None:
            return PaymentState.UNPAID
        if _paid(m):
            return PaymentState.PAID
        if _queued(m, sniff):
            return PaymentState.QUEUED
    except Exception:  # noqa: BLE001
        logger.debug("Unreadable milestone record treated as unpaid", exc_info=True)
    return PaymentState.UNPAID


def is_paid(milestone: Any) -> bool:
    return derive_payment_state(milestone) is PaymentState.PAID


def has_safe_marker(milestone: Any, *, sniff: bool = True) -> bool:
    """Return True when the milestone carries multisig markers, paid or not."""

    try:
        m = _as_mapping(milestone)
        return m is not None and _queued(m, sniff)
    except Exception:  # noqa: BLE001
        return False


def read_safe_tx_hash(milestone: Any) -> str | None:
    """Return the multisig transaction hash recorded on the milestone, if any."""

    m = _as_mapping(milestone)
    if m is None:
        return None
    for field in _SAFE_HASH_FIELDS:
        value = m.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


__all__ = [
    "PAID_STATUSES",
    "SAFE_STATUSES",
    "make_key",
    "parse_key",
    "derive_payment_state",
    "is_paid",
    "has_safe_marker",
    "read_safe_tx_hash",
]
