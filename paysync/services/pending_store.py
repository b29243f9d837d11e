"""Durable bookkeeping of milestone payments that are in flight."""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from paysync import db
from paysync.models.pending_payment import PendingPayment
from paysync.services.payment_state import parse_key
from paysync.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 300.0


class PendingKeyStore:
    """Pending payment markers keyed by ``"{bid_id}-{milestone_index}"``.

    Rows live in the ``pending_payments`` table so they survive restarts and
    are visible to every worker. When the database cannot be used the store
    logs once and continues with an in-memory map (starting empty) instead of
    raising. Every method is synchronous: callers never hold a read across an
    ``await``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.max_age = timedelta(seconds=max_age_seconds)
        self._clock = clock
        self._memory: dict[str, datetime] = {}
        self.degraded = False

    def _session(self) -> Session:
        factory = self._session_factory or db.get_sessionmaker()
        return factory()

    def _degrade(self, operation: str, exc: SQLAlchemyError) -> None:
        if not self.degraded:
            logger.warning(
                "Pending payment storage unavailable; falling back to memory",
                extra={"operation": operation, "error": str(exc)},
            )
        self.degraded = True

    def add(self, key: str, at: datetime | None = None) -> None:
        """Mark ``key`` as pending (refreshing its timestamp if already present)."""

        bid_id, milestone_index = parse_key(key)
        queued_at = ensure_utc(at or self._clock())
        if not self.degraded:
            try:
                with self._session() as session, session.begin():
                    row = session.scalar(select(PendingPayment).where(PendingPayment.key == key))
                    if row is None:
                        session.add(
                            PendingPayment(
                                key=key,
                                bid_id=bid_id,
                                milestone_index=milestone_index,
                                queued_at=queued_at,
                            )
                        )
                    else:
                        row.queued_at = queued_at
                return
            except IntegrityError:
                # Another worker inserted the same key concurrently; its marker is as good as ours.
                logger.info("Pending payment already recorded", extra={"key": key})
                return
            except SQLAlchemyError as exc:
                self._degrade("add", exc)
        self._memory[key] = queued_at

    def remove(self, key: str) -> None:
        if not self.degraded:
            try:
                with self._session() as session, session.begin():
                    session.execute(delete(PendingPayment).where(PendingPayment.key == key))
                return
            except SQLAlchemyError as exc:
                self._degrade("remove", exc)
        self._memory.pop(key, None)

    def is_pending(self, key: str) -> bool:
        if not self.degraded:
            try:
                with self._session() as session:
                    found = session.scalar(select(PendingPayment.id).where(PendingPayment.key == key))
                return found is not None
            except SQLAlchemyError as exc:
                self._degrade("is_pending", exc)
        return key in self._memory

    def _entries(self) -> dict[str, datetime]:
        if not self.degraded:
            try:
                with self._session() as session:
                    rows = session.execute(
                        select(PendingPayment.key, PendingPayment.queued_at).order_by(PendingPayment.queued_at)
                    ).all()
                return {key: ensure_utc(queued_at) for key, queued_at in rows}
            except SQLAlchemyError as exc:
                self._degrade("list", exc)
        return dict(self._memory)

    def list_keys(self) -> list[str]:
        return list(self._entries())

    def queued_at(self, key: str) -> datetime | None:
        return self._entries().get(key)

    def sweep_stale(self, max_age: timedelta | float | None = None, now: datetime | None = None) -> list[str]:
        """Remove markers recorded more than ``max_age`` ago and return their keys."""

        if max_age is None:
            limit = self.max_age
        elif isinstance(max_age, timedelta):
            limit = max_age
        else:
            limit = timedelta(seconds=max_age)
        current = ensure_utc(now or self._clock())

        stale = [key for key, queued_at in self._entries().items() if current - queued_at > limit]
        for key in stale:
            self.remove(key)
        if stale:
            logger.info(
                "Swept stale pending payments",
                extra={"keys": stale, "max_age_seconds": limit.total_seconds()},
            )
        return stale


__all__ = ["PendingKeyStore", "DEFAULT_MAX_AGE_SECONDS"]
