"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from notesync.dependencies import AppSettings, Runtime

router = APIRouter(tags=["system"])
logger = logging.getLogger("notesync.health")


@router.get("/health")
async def health_check(runtime: Runtime, settings: AppSettings) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight local database check and reports the queue
    size and cached connectivity.
    """
    db_ok = False
    queued: int | None = None
    try:
        queued = await runtime.queue.count()
        db_ok = True
    except Exception as exc:
        logger.warning("Health check DB probe failed: %s", exc)

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "online": runtime.monitor.get_status(),
        "queued": queued,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
