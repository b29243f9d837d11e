"""Health check endpoint."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text

from paysync.config import get_settings
from paysync.core.scheduler import is_scheduler_running
from paysync.db import get_engine
from paysync.services.payment_sync import PaymentSyncService, get_payment_service

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


@router.get("", summary="Health check")
def healthcheck(service: PaymentSyncService = Depends(get_payment_service)) -> dict[str, object]:
    """Return a simple health payload with poller and storage telemetry."""

    settings = get_settings()
    db_status = _db_status()
    degraded = db_status != "ok" or service.store.degraded
    return {
        "status": "degraded" if degraded else "ok",
        "db_status": db_status,
        "db_ok": db_status == "ok",
        "pending_store": "memory" if service.store.degraded else "database",
        "active_pollers": len(service.registry.active_keys()),
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_running(),
        "backend_configured": bool(settings.BACKEND_API_TOKEN),
        "polling": {
            "max_tries": settings.POLL_MAX_TRIES,
            "interval_seconds": settings.POLL_INTERVAL_SECONDS,
            "pending_max_age_seconds": settings.PENDING_MAX_AGE_SECONDS,
        },
    }
