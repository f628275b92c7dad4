"""Health check endpoint. Public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from stravasync.dependencies import AppSettings

router = APIRouter(tags=["system"])
logger = logging.getLogger("stravasync.health")


@router.get("/health")
async def health_check(request: Request, settings: AppSettings) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports whether the sync orchestrator is running and its counters.
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    stats: dict | None = None
    if orchestrator is not None:
        try:
            stats = orchestrator.get_stats()
        except Exception as exc:
            logger.warning("Health check stats probe failed: %s", exc)

    return {
        "status": "healthy" if stats is not None else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "orchestrator": stats,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
