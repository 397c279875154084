"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from notesync.config import Settings, get_settings
from notesync.sync.connectivity import ConnectivityMonitor
from notesync.sync.runtime import SyncRuntime


async def get_runtime(request: Request) -> SyncRuntime:
    """Return the process-wide sync runtime created in the app lifespan."""
    runtime: SyncRuntime | None = getattr(request.app.state, "sync_runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Sync runtime not started")
    return runtime


async def get_app_settings(request: Request) -> Settings:
    """Return the settings the app was created with."""
    settings: Settings | None = getattr(request.app.state, "settings", None)
    if settings is None:
        return get_settings()
    return settings


async def get_monitor(runtime: Annotated[SyncRuntime, Depends(get_runtime)]) -> ConnectivityMonitor:
    return runtime.monitor


# Annotated shortcuts for route signatures
Runtime = Annotated[SyncRuntime, Depends(get_runtime)]
Monitor = Annotated[ConnectivityMonitor, Depends(get_monitor)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
