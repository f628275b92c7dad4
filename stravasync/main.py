"""stravasync API: FastAPI application entry point.

Run locally:
    uvicorn stravasync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stravasync.config import Settings, get_settings
from stravasync.orchestrator.client import RemoteClient
from stravasync.orchestrator.config_loader import get_sync_config, load_sync_config
from stravasync.orchestrator.facade import SyncOrchestrator
from stravasync.orchestrator.store import JsonFileStore
from stravasync.routers import health, sync

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("stravasync")


def build_orchestrator(settings: Settings) -> tuple[SyncOrchestrator, RemoteClient]:
    """Construct the orchestrator and the HTTP client it owns."""
    config = (
        load_sync_config(settings.sync_config_path)
        if settings.sync_config_path
        else get_sync_config()
    )
    client = RemoteClient(
        base_url=settings.api_base_url, timeout=settings.http_timeout_seconds
    )
    store = JsonFileStore(settings.store_path)
    return SyncOrchestrator.create(store, client, config), client


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(
        "Starting stravasync API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    orchestrator, client = build_orchestrator(settings)
    await orchestrator.start()
    app.state.orchestrator = orchestrator
    yield
    app.state.orchestrator = None
    await orchestrator.close()
    await client.aclose()
    logger.info("stravasync API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="stravasync API",
        description=(
            "Background Strava sync orchestrator with credential tracking, "
            "de-duplicated requests, and calendar reconciliation."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(sync.router, prefix="/api/v1")

    return app


app = create_app()
