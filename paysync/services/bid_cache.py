"""Short-lived in-memory cache of bids fetched from the backend."""
from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

from paysync.schemas.bid import BidRecord


class BidCache:
    """Per-bid cache with a TTL.

    The cache is advisory: the backend stays the source of truth, and the
    poller merges fresh milestones in as soon as it observes them.
    """

    def __init__(self, ttl_seconds: float = 3.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._bids: dict[int, tuple[float, BidRecord]] = {}

    def get(self, bid_id: int) -> BidRecord | None:
        entry = self._bids.get(bid_id)
        if entry is None:
            return None
        stored_at, bid = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            self._bids.pop(bid_id, None)
            return None
        return bid

    def put(self, bid: BidRecord) -> None:
        if bid.bid_id is None:
            return
        self._bids[bid.bid_id] = (self._clock(), bid)

    def merge_milestone(self, bid_id: int, milestone_index: int, milestone: Mapping[str, Any]) -> BidRecord | None:
        """Overlay ``milestone`` onto the cached copy of the bid, if one is cached."""

        entry = self._bids.get(bid_id)
        if entry is None:
            return None
        _, bid = entry
        milestones = list(bid.milestones)
        while len(milestones) <= milestone_index:
            milestones.append({})
        current = milestones[milestone_index]
        merged = dict(current) if isinstance(current, Mapping) else {}
        merged.update(milestone)
        milestones[milestone_index] = merged
        updated = bid.model_copy(update={"milestones": milestones})
        self._bids[bid_id] = (self._clock(), updated)
        return updated

    def invalidate(self, bid_id: int | None = None) -> None:
        """Drop one bid, or every cached bid when ``bid_id`` is None."""

        if bid_id is None:
            self._bids.clear()
        else:
            self._bids.pop(bid_id, None)

    def __len__(self) -> int:
        return len(self._bids)


__all__ = ["BidCache"]
