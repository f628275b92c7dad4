"""Control endpoints for the sync orchestrator: state, enable/disable, force, signals."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from stravasync.dependencies import Orchestrator
from stravasync.models.base import ErrorDetail
from stravasync.models.sync import (
    CredentialRefreshRead,
    EnableSyncRead,
    StorageChangedCreate,
    SyncEventRead,
    SyncResultRead,
    SyncStateRead,
    SyncStatsRead,
)
from stravasync.orchestrator.signals import StorageChanged, VisibilityResumed

router = APIRouter(
    prefix="/sync", tags=["sync"], responses={503: {"model": ErrorDetail}}
)


# ---------- State ----------

@router.get("/state", response_model=SyncStateRead)
async def get_state(orchestrator: Orchestrator) -> Any:
    return orchestrator.get_state().to_dict()


@router.get("/stats", response_model=SyncStatsRead)
async def get_stats(orchestrator: Orchestrator) -> Any:
    return orchestrator.get_stats()


@router.get("/events", response_model=list[SyncEventRead])
async def list_events(orchestrator: Orchestrator) -> Any:
    """Most recent lifecycle events, oldest first."""
    return [
        {"name": e.name, "payload": e.payload, "at": e.at}
        for e in orchestrator.recent_events.items()
    ]


# ---------- Control ----------

@router.post("/enable", response_model=EnableSyncRead)
async def enable_sync(orchestrator: Orchestrator) -> Any:
    """Enable periodic sync.

    When the remote credential is invalid the response carries an
    ``authorization_url`` the client should navigate to.
    """
    result = await orchestrator.enable_sync()
    return {"enabled": result.enabled, "authorization_url": result.authorization_url}


@router.post("/disable", response_model=SyncStateRead)
async def disable_sync(orchestrator: Orchestrator) -> Any:
    await orchestrator.disable_sync()
    return orchestrator.get_state().to_dict()


@router.post("/force", response_model=SyncResultRead)
async def force_sync(orchestrator: Orchestrator) -> Any:
    result = await orchestrator.force_sync()
    return {
        "status": result.status.value,
        "activity_count": result.activity_count,
        "new_events": result.new_events,
        "error": result.error,
    }


@router.post("/credential/refresh", response_model=CredentialRefreshRead)
async def refresh_credential(orchestrator: Orchestrator) -> Any:
    return {"refreshed": await orchestrator.force_credential_refresh()}


# ---------- Host signals ----------

@router.post("/signals/visibility", status_code=202)
async def visibility_resumed(orchestrator: Orchestrator) -> None:
    orchestrator.post_signal(VisibilityResumed())


@router.post("/signals/storage", status_code=202)
async def storage_changed(orchestrator: Orchestrator, body: StorageChangedCreate) -> None:
    orchestrator.post_signal(StorageChanged(key=body.key, new_value=body.new_value))
