"""Tests for milestone payment state derivation."""
import pytest

from paysync.schemas.bid import BidRecord
from paysync.schemas.payment import PaymentState
from paysync.services.payment_state import (
    derive_payment_state,
    has_safe_marker,
    is_paid,
    make_key,
    parse_key,
    read_safe_tx_hash,
)


@pytest.mark.parametrize(
    "milestone",
    [
        {"paymentTxHash": "0xdef"},
        {"paymentDate": "2025-01-01T00:00:00Z"},
        {"txHash": "0x1"},
        {"hash": "0x2"},
        {"paidAt": "2025-01-01"},
        {"payment_tx_hash": "0x3"},
        {"paid_at": "2025-01-01"},
        {"paid": True},
        {"isPaid": True},
        {"status": "PAID"},
        {"status": " Executed "},
        {"status": "completed"},
        {"safeTxHash": "0xabc", "paymentTxHash": "0xdef"},
    ],
)
def test_paid_markers(milestone):
    assert derive_payment_state(milestone) is PaymentState.PAID
    assert is_paid(milestone)


@pytest.mark.parametrize(
    "milestone",
    [
        {"safeTxHash": "0xabc"},
        {"safe_tx_hash": "0xabc"},
        {"safePaymentTxHash": "0xabc"},
        {"safeNonce": 0},
        {"safe_nonce": 12},
        {"safeExecutedAt": "2025-01-01"},
        {"safeStatus": "awaiting_exec"},
        {"safe_status": "Submitted"},
        {"status": "pending"},
        {"status": "queued"},
    ],
)
def test_queued_markers(milestone):
    assert derive_payment_state(milestone) is PaymentState.QUEUED
    assert has_safe_marker(milestone)
    assert not is_paid(milestone)


@pytest.mark.parametrize(
    "milestone",
    [
        {},
        {"name": "Design", "amount": 1000},
        {"paymentTxHash": "", "paymentDate": None, "paid": False},
        {"paymentTxHash": "   "},
        {"paid": "yes"},
        {"safeTxHash": None, "safeNonce": None},
        {"status": "draft"},
        {"status": 42},
    ],
)
def test_unpaid_records(milestone):
    assert derive_payment_state(milestone) is PaymentState.UNPAID


@pytest.mark.parametrize("value", [None, "paid", 12, ["paymentTxHash"], object()])
def test_non_mapping_input_is_unpaid(value):
    assert derive_payment_state(value) is PaymentState.UNPAID


def test_sniff_detects_unknown_safe_fields():
    milestone = {"multisig": {"provider": "gnosis", "id": "abc"}}
    assert derive_payment_state(milestone) is PaymentState.QUEUED
    assert derive_payment_state(milestone, sniff=False) is PaymentState.UNPAID

    assert derive_payment_state({"safeProposalId": "p-1"}) is PaymentState.QUEUED


def test_sniff_ignores_unset_safe_fields():
    assert derive_payment_state({"safeProposalId": None, "safeUrl": ""}) is PaymentState.UNPAID


def test_derivation_is_idempotent():
    milestone = {"safeTxHash": "0xabc", "status": "pending"}
    first = derive_payment_state(milestone)
    assert derive_payment_state(milestone) is first
    assert milestone == {"safeTxHash": "0xabc", "status": "pending"}


def test_queued_then_paid_after_reconcile():
    before = {"safeTxHash": "0xabc", "status": "pending"}
    after = {"safeTxHash": "0xabc", "paymentTxHash": "0xdef", "paymentDate": "2025-01-01T00:00:00Z"}

    assert derive_payment_state(before) is PaymentState.QUEUED
    assert derive_payment_state(after) is PaymentState.PAID


def test_pydantic_models_are_accepted():
    bid = BidRecord.model_validate({"bidId": 3, "milestones": []})
    assert derive_payment_state(bid) is PaymentState.UNPAID


def test_unreadable_mapping_never_raises():
    class Exploding(dict):
        def get(self, *args, **kwargs):
            raise RuntimeError("boom")

    assert derive_payment_state(Exploding()) is PaymentState.UNPAID
    assert has_safe_marker(Exploding()) is False


def test_read_safe_tx_hash():
    assert read_safe_tx_hash({"safeTxHash": " 0xabc "}) == "0xabc"
    assert read_safe_tx_hash({"safe_payment_tx_hash": "0xdef"}) == "0xdef"
    assert read_safe_tx_hash({"safeTxHash": ""}) is None
    assert read_safe_tx_hash(None) is None


def test_pending_key_format():
    assert make_key(12, 0) == "12-0"
    assert parse_key("12-3") == (12, 3)
    for bad in ("", "12", "a-1", "12--1", "-1-2", "1-2-3"):
        with pytest.raises(ValueError):
            parse_key(bad)


def test_zero_paid_markers_do_not_count_as_paid():
    assert derive_payment_state({"txHash": 0, "safeTxHash": "0xabc"}) is PaymentState.QUEUED
    assert derive_payment_state({"paymentDate": 0}) is PaymentState.UNPAID
    assert derive_payment_state({"hash": 0.0}) is PaymentState.UNPAID
    assert derive_payment_state({"paidAt": 1735689600}) is PaymentState.PAID
