"""Pydantic models for the sync control endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from stravasync.models.base import StravaSyncBase


# ---------- State ----------

class SyncStateRead(StravaSyncBase):
    sync_enabled: bool
    credential_valid: bool
    last_sync_time: str | None = None
    sync_in_progress: bool
    error_count: int = Field(ge=0)


class SyncStatsRead(SyncStateRead):
    credential_status: str
    engine: str
    active_timers: int = Field(ge=0)
    pending_timers: int = Field(ge=0)
    cached_requests: int = Field(ge=0)
    in_flight_requests: int = Field(ge=0)
    observers: int = Field(ge=0)


# ---------- Control ----------

class EnableSyncRead(StravaSyncBase):
    enabled: bool
    authorization_url: str | None = None


class SyncResultRead(StravaSyncBase):
    status: str
    activity_count: int = 0
    new_events: int = 0
    error: str | None = None


class CredentialRefreshRead(StravaSyncBase):
    refreshed: bool


# ---------- Signals ----------

class StorageChangedCreate(StravaSyncBase):
    key: str = Field(min_length=1, max_length=200)
    new_value: str | None = None


# ---------- Events ----------

class SyncEventRead(StravaSyncBase):
    name: str
    payload: Any = None
    at: str
