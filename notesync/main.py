"""NoteSync API — FastAPI application entry point.

Run locally:
    uvicorn notesync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from notesync.config import Settings, get_settings
from notesync.routers import connectivity, health, ingestions
from notesync.services.sqlite import close_database, init_database
from notesync.sync.runtime import SyncRuntime

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("notesync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting NoteSync API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    runtime: SyncRuntime | None = getattr(app.state, "sync_runtime", None)
    owns_database = runtime is None
    if runtime is None:
        database = await init_database(settings)
        runtime = SyncRuntime.build(settings, database=database)
        app.state.sync_runtime = runtime
    await runtime.start()
    yield
    await runtime.stop()
    if owns_database:
        await close_database()
    logger.info("NoteSync API shut down")


# ---------- App factory ----------

def create_app(
    settings: Settings | None = None, runtime: SyncRuntime | None = None
) -> FastAPI:
    """Build the app.

    Args:
        settings: Overrides the environment-derived settings.
        runtime:  A pre-built sync runtime (tests inject one with a stub
                  remote store); built from settings at startup otherwise.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="NoteSync API",
        description=(
            "Offline-first contact notes — durable local queue, connectivity "
            "monitoring and replay against the remote notes store."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    if runtime is not None:
        app.state.sync_runtime = runtime

    # CORS: the browser client calls this API directly
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(ingestions.router, prefix=v1_prefix)
    app.include_router(connectivity.router, prefix=v1_prefix)

    return app


app = create_app()
