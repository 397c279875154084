"""Connectivity signal endpoints.

The client reports its own online/offline transitions here (the browser's
``online`` / ``offline`` events); the background probe feeds the same
monitor from the server side.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from notesync.dependencies import Monitor
from notesync.models.ingestions import (
    ConnectivityChangeRead,
    ConnectivityRead,
    ConnectivityUpdate,
)

router = APIRouter(prefix="/connectivity", tags=["connectivity"])


@router.get("", response_model=ConnectivityRead)
async def get_connectivity(monitor: Monitor) -> Any:
    return {"online": monitor.get_status()}


@router.put("", response_model=ConnectivityChangeRead)
async def report_connectivity(body: ConnectivityUpdate, monitor: Monitor) -> Any:
    """Apply an environment signal.  Going online triggers one sync pass."""
    changed = monitor.set_status(body.online)
    return {"online": monitor.get_status(), "changed": changed}
