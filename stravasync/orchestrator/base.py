"""Core data types for the stravasync orchestrator.

These dataclasses are shared by the timer registry, request coordinator,
credential monitor, sync engine and facade.  The HTTP layer never touches
them directly; it reads ``OrchestratorState.snapshot()`` and converts that
into Pydantic response models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Identity:
    """Signed-in user as found in the local store.

    Attributes:
        user_id: Application user identifier.
        token:   Bearer credential sent to every remote endpoint.
    """

    user_id: str
    token: str

    @property
    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


# ---------------------------------------------------------------------------
# Orchestrator state
# ---------------------------------------------------------------------------


@dataclass
class OrchestratorState:
    """Mutable orchestrator state.

    One instance exists per orchestrator.  The sync engine owns it; the
    credential monitor writes ``credential_valid`` and ``error_count``.
    Everyone else reads frozen copies from ``snapshot()``.

    Attributes:
        sync_enabled:     Periodic sync is switched on for this user.
        credential_valid: Last known validity of the remote credential.
        last_sync_time:   ISO-8601 UTC time of the last successful sync.
        sync_in_progress: A sync attempt is running right now.
        error_count:      Consecutive failures since the last success.
    """

    sync_enabled: bool = False
    credential_valid: bool = False
    last_sync_time: str | None = None
    sync_in_progress: bool = False
    error_count: int = 0

    def snapshot(self) -> "StateSnapshot":
        return StateSnapshot(
            sync_enabled=self.sync_enabled,
            credential_valid=self.credential_valid,
            last_sync_time=self.last_sync_time,
            sync_in_progress=self.sync_in_progress,
            error_count=self.error_count,
        )

    def record_error(self) -> None:
        self.error_count += 1

    def reset_errors(self) -> None:
        self.error_count = 0


@dataclass(frozen=True)
class StateSnapshot:
    """Read-only copy of ``OrchestratorState``."""

    sync_enabled: bool
    credential_valid: bool
    last_sync_time: str | None
    sync_in_progress: bool
    error_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "sync_enabled": self.sync_enabled,
            "credential_valid": self.credential_valid,
            "last_sync_time": self.last_sync_time,
            "sync_in_progress": self.sync_in_progress,
            "error_count": self.error_count,
        }


# ---------------------------------------------------------------------------
# Activities and reconciled events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActivityRecord:
    """One activity as returned by the remote activities endpoint.

    Attributes:
        id:                 Remote activity ID.
        type:               Remote activity type code ('Run', 'Ride', ...).
        distance:           Distance in meters.
        moving_time:        Moving time in seconds.
        start_date:         ISO-8601 start time (UTC).
        start_date_local:   ISO-8601 start time in the athlete's zone, if sent.
    """

    id: int | str
    type: str
    distance: float
    moving_time: int
    start_date: str
    start_date_local: str | None = None

    @classmethod
    def from_json(cls, data: dict) -> "ActivityRecord":
        """Build a record from one activities payload entry.

        Raises:
            KeyError:  'id' or 'start_date' is missing.
            TypeError: A start date is not a string.
        """
        start_date = data["start_date"]
        start_date_local = data.get("start_date_local")
        if not isinstance(start_date, str):
            raise TypeError(f"start_date must be a string, got {type(start_date).__name__}")
        if start_date_local is not None and not isinstance(start_date_local, str):
            raise TypeError(
                f"start_date_local must be a string, got {type(start_date_local).__name__}"
            )
        return cls(
            id=data["id"],
            type=data.get("type", ""),
            distance=data.get("distance", 0) or 0,
            moving_time=int(data.get("moving_time", 0) or 0),
            start_date=start_date,
            start_date_local=start_date_local,
        )


@dataclass
class ReconciledEvent:
    """A calendar event derived from one remote activity.

    Attributes:
        type:      Display label for the activity type.
        distance:  Distance in meters.
        duration:  Moving time in whole minutes.
        source:    Always 'Strava' for events produced here.
        strava_id: Remote activity ID, the de-duplication key within a day.
        synced_at: ISO-8601 UTC time the event was created.
    """

    type: str
    distance: float
    duration: int
    strava_id: int | str
    source: str = "Strava"
    synced_at: str = field(default_factory=utc_now_iso)

    def to_json(self) -> dict:
        return {
            "type": self.type,
            "distance": self.distance,
            "duration": self.duration,
            "source": self.source,
            "strava_id": self.strava_id,
            "syncedAt": self.synced_at,
        }


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class SyncStatus(str, Enum):
    SKIPPED = "skipped"
    SUCCESS = "success"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Outcome of one ``run_sync`` call.

    Attributes:
        status:         What happened (see ``SyncStatus``).
        activity_count: Activities returned by the remote service.
        new_events:     Events added to the local calendar.
        error:          Failure reason when status is FAILED or SKIPPED.
    """

    status: SyncStatus
    activity_count: int = 0
    new_events: int = 0
    error: str | None = None

    @classmethod
    def skipped(cls, reason: str) -> "SyncResult":
        return cls(status=SyncStatus.SKIPPED, error=reason)


@dataclass(frozen=True)
class EnableResult:
    """Outcome of ``enable_sync``.

    A non-null ``authorization_url`` tells the caller to send the user there
    to re-authorize the remote service.
    """

    enabled: bool
    authorization_url: str | None = None
