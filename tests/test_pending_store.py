"""Tests for the pending payment store."""
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from paysync.models import PendingPayment
from paysync.services.pending_store import PendingKeyStore
from paysync.utils.time import utcnow


def test_add_persists_row(pending_store, session_factory):
    pending_store.add("12-3")

    with session_factory() as session:
        row = session.scalar(select(PendingPayment).where(PendingPayment.key == "12-3"))
    assert row is not None
    assert (row.bid_id, row.milestone_index) == (12, 3)
    assert pending_store.is_pending("12-3")
    assert pending_store.list_keys() == ["12-3"]


def test_add_refreshes_timestamp(pending_store):
    earlier = utcnow() - timedelta(minutes=10)
    pending_store.add("1-0", at=earlier)
    pending_store.add("1-0")

    assert pending_store.list_keys() == ["1-0"]
    assert pending_store.queued_at("1-0") > earlier + timedelta(minutes=9)


def test_add_rejects_malformed_keys(pending_store):
    with pytest.raises(ValueError):
        pending_store.add("not-a-key")
    assert pending_store.list_keys() == []


def test_remove_is_idempotent(pending_store):
    pending_store.add("1-0")
    pending_store.remove("1-0")
    pending_store.remove("1-0")
    pending_store.remove("garbage")

    assert not pending_store.is_pending("1-0")


def test_store_survives_new_instance(pending_store, session_factory):
    pending_store.add("5-1")

    reopened = PendingKeyStore(session_factory)
    assert reopened.is_pending("5-1")


def test_sweep_removes_only_stale_keys(pending_store):
    now = utcnow()
    pending_store.add("1-0", at=now - timedelta(seconds=301))
    pending_store.add("2-0", at=now - timedelta(seconds=299))
    pending_store.add("3-0", at=now)

    removed = pending_store.sweep_stale(now=now)

    assert removed == ["1-0"]
    assert pending_store.list_keys() == ["2-0", "3-0"]


def test_sweep_accepts_custom_age(pending_store):
    now = utcnow()
    pending_store.add("1-0", at=now - timedelta(seconds=30))

    assert pending_store.sweep_stale(60, now=now) == []
    assert pending_store.sweep_stale(timedelta(seconds=10), now=now) == ["1-0"]


class _BrokenSession:
    def __enter__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def __exit__(self, *exc_info):
        return False


def test_store_degrades_to_memory_when_database_fails(caplog):
    store = PendingKeyStore(lambda: _BrokenSession())

    store.add("1-0")
    assert store.degraded is True
    assert store.is_pending("1-0")
    assert store.list_keys() == ["1-0"]

    store.add("2-0", at=utcnow() - timedelta(hours=1))
    assert store.sweep_stale() == ["2-0"]

    store.remove("1-0")
    assert store.list_keys() == []
    assert sum("falling back to memory" in r.getMessage() for r in caplog.records) == 1
