"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from stravasync.config import Settings, get_settings
from stravasync.orchestrator.facade import SyncOrchestrator


async def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Return the orchestrator built in the application lifespan."""
    orchestrator: SyncOrchestrator | None = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sync orchestrator not running")
    return orchestrator


# Annotated shortcuts for route signatures
Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
AppSettings = Annotated[Settings, Depends(get_settings)]
