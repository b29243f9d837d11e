"""Background jobs for the payment sync service."""
from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from paysync.config import Settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def start_scheduler(service, settings: Settings) -> AsyncIOScheduler:
    """Start the periodic stale-pending sweep for ``service``."""

    global _scheduler
    if _scheduler is not None:
        return _scheduler

    async def _sweep() -> None:
        # Runs on the event loop so store writes never interleave with pollers from a thread.
        service.sweep_stale()

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _sweep,
        "interval",
        seconds=settings.PENDING_SWEEP_INTERVAL_SECONDS,
        id="sweep-stale-pending",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    scheduler.start()
    _scheduler = scheduler
    logger.info(
        "Scheduler started",
        extra={"sweep_interval_seconds": settings.PENDING_SWEEP_INTERVAL_SECONDS},
    )
    return scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None


def is_scheduler_running() -> bool:
    return _scheduler is not None and _scheduler.running


__all__ = ["start_scheduler", "shutdown_scheduler", "is_scheduler_running"]
