"""Sync engine: decides when a sync may run and executes it.

Workflow of one sync attempt:
1. Skip if a sync is already running, or sync is disabled (unless forced)
2. Re-check the credential if it is not known to be valid
3. Fetch remote activities through the request coordinator
4. Reconcile them into the local calendar events and write them locally
5. Mirror the merged events to the remote user-data endpoint (smart merge)
6. Record the outcome on the state and announce it on the event bus

A 401 from the activities endpoint triggers a credential refresh; after a
successful refresh exactly one full re-run is scheduled shortly after.

States:
    IDLE    - no attempt running
    RUNNING - ``sync_in_progress`` is set; further starts are no-ops
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

import httpx

from stravasync.orchestrator.base import (
    ActivityRecord,
    EnableResult,
    Identity,
    OrchestratorState,
    SyncResult,
    SyncStatus,
    utc_now_iso,
)
from stravasync.orchestrator.client import SMART_MERGE, RemoteClient
from stravasync.orchestrator.config_loader import SyncConfig
from stravasync.orchestrator.coordinator import RequestCoordinator
from stravasync.orchestrator.credentials import CredentialMonitor
from stravasync.orchestrator.errors import (
    AuthorizationUnavailable,
    CredentialInvalid,
    RemoteRejection,
)
from stravasync.orchestrator.events import EventBus, SyncEventName
from stravasync.orchestrator.reconcile import parse_activities, reconcile
from stravasync.orchestrator.store import (
    EVENTS_KEY,
    SYNC_ENABLED_KEY,
    LocalStore,
    read_identity,
    read_json,
    user_events_key,
    write_json,
)
from stravasync.orchestrator.timers import TimerRegistry

logger = logging.getLogger("stravasync.orchestrator.engine")

# Coordinator keys
ACTIVITIES_KEY = "strava-activities"
USER_DATA_KEY = "user-data"
CLOUD_SYNC_KEY = "cloud-sync"
AUTH_URL_KEY = "strava-auth"

# Timer names
TOKEN_CHECK_TIMER = "token-check"
SYNC_TIMER = "sync"
INITIAL_SYNC_TIMER = "initial-sync"
SYNC_RETRY_TIMER = "sync-retry"

CREDENTIAL_EXPIRED = "credential_expired"


class EngineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class SyncEngine:
    """State machine around the fetch → reconcile → persist pipeline.

    The engine owns ``OrchestratorState``.  It shares the state object with
    the credential monitor, which writes only ``credential_valid`` and
    ``error_count``.
    """

    def __init__(
        self,
        state: OrchestratorState,
        store: LocalStore,
        client: RemoteClient,
        coordinator: RequestCoordinator,
        credentials: CredentialMonitor,
        timers: TimerRegistry,
        bus: EventBus,
        config: SyncConfig,
    ) -> None:
        self._state = state
        self._store = store
        self._client = client
        self._coordinator = coordinator
        self._credentials = credentials
        self._timers = timers
        self._bus = bus
        self._config = config

    @property
    def phase(self) -> EngineState:
        return EngineState.RUNNING if self._state.sync_in_progress else EngineState.IDLE

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def run_sync(self, force: bool = False) -> SyncResult:
        """Run one sync attempt.

        Args:
            force: Run even when sync is disabled.  The in-progress guard
                   still applies.

        Returns:
            SyncResult describing what happened.  Never raises.
        """
        if self._state.sync_in_progress:
            logger.info("Sync already in progress; skipping duplicate request")
            return SyncResult.skipped("in_progress")

        if not force and not self._state.sync_enabled:
            logger.debug("Sync disabled; skipping")
            return SyncResult.skipped("disabled")

        if not self._state.credential_valid:
            logger.info("Credential not known to be valid; re-checking before sync")
            await self._credentials.check_status()
            if not self._state.credential_valid:
                logger.info("Credential still invalid; skipping sync")
                return SyncResult.skipped("credential_invalid")
            # Another attempt may have started while the check was awaited.
            if self._state.sync_in_progress:
                logger.info("Sync started elsewhere during credential check; skipping")
                return SyncResult.skipped("in_progress")

        identity = read_identity(self._store)
        if identity is None:
            logger.info("Not signed in; skipping sync")
            return SyncResult.skipped("not_signed_in")

        self._state.sync_in_progress = True
        self._bus.publish(SyncEventName.SYNC_STARTED)
        logger.info(
            "Starting sync (enabled=%s, credential_valid=%s, last_sync=%s)",
            self._state.sync_enabled,
            self._state.credential_valid,
            self._state.last_sync_time,
        )

        try:
            response: httpx.Response = await self._coordinator.execute(
                ACTIVITIES_KEY, lambda: self._client.get_activities(identity)
            )

            if response.is_success:
                activities = parse_activities(response.json())
                synced_at = utc_now_iso()
                new_events = await self._store_and_mirror(identity, activities, synced_at)
                self._state.last_sync_time = synced_at
                self._state.reset_errors()
                self._bus.publish(
                    SyncEventName.SYNC_COMPLETED,
                    {"activity_count": len(activities), "new_events": new_events},
                )
                logger.info(
                    "Sync complete: %d activities, %d new events", len(activities), new_events
                )
                return SyncResult(
                    status=SyncStatus.SUCCESS,
                    activity_count=len(activities),
                    new_events=new_events,
                )

            if response.status_code == 401:
                return await self._handle_expired_credential(force)

            raise RemoteRejection("activities", response.status_code)

        except CredentialInvalid:
            self._bus.publish(SyncEventName.SYNC_FAILED, {"reason": CREDENTIAL_EXPIRED})
            return SyncResult(status=SyncStatus.FAILED, error=CREDENTIAL_EXPIRED)

        except Exception as exc:
            logger.warning("Sync failed: %s", exc)
            self._state.record_error()
            self._bus.publish(SyncEventName.SYNC_FAILED, {"error": str(exc)})
            return SyncResult(status=SyncStatus.FAILED, error=str(exc))

        finally:
            self._state.sync_in_progress = False

    async def _handle_expired_credential(self, force: bool) -> SyncResult:
        """Refresh after a 401 and schedule one re-run.

        Raises:
            CredentialInvalid: The refresh did not succeed.
        """
        logger.info("Activities request unauthorized; refreshing credential")
        if not await self._credentials.refresh():
            logger.warning("Credential refresh failed; sync aborted for this cycle")
            raise CredentialInvalid(CREDENTIAL_EXPIRED)

        delay = self._config.timers.retry_after_refresh_delay
        self._timers.call_later(SYNC_RETRY_TIMER, delay, lambda: self.run_sync(force=force))
        logger.info("Credential refreshed; sync re-run scheduled in %.1fs", delay)
        return SyncResult(status=SyncStatus.RETRY_SCHEDULED)

    async def _store_and_mirror(
        self, identity: Identity, activities: list[ActivityRecord], synced_at: str
    ) -> int:
        """Reconcile activities locally, then mirror the result remotely.

        Returns:
            Number of events added.
        """
        key = user_events_key(identity.user_id)
        existing = read_json(self._store, key, {})
        merged, added = reconcile(existing, activities, self._config.activity_label)

        # File-backed stores fsync on every write; keep that off the loop.
        await asyncio.to_thread(write_json, self._store, key, merged)
        await asyncio.to_thread(write_json, self._store, EVENTS_KEY, merged)

        await self._mirror(identity, {"calendarEvents": merged, "lastStravaSync": synced_at})
        return added

    async def _mirror(self, identity: Identity, data: dict) -> None:
        # Local data is already written; a failed mirror is retried by the next sync.
        try:
            response: httpx.Response = await self._coordinator.execute(
                CLOUD_SYNC_KEY,
                lambda: self._client.post_user_data(identity, data, merge_strategy=SMART_MERGE),
                use_cache=False,
            )
        except Exception as exc:
            logger.warning("Mirroring calendar events failed: %s", exc)
            return
        if response.is_success:
            logger.debug("Calendar events mirrored to remote")
        else:
            logger.warning("Mirroring calendar events rejected: HTTP %d", response.status_code)

    # ------------------------------------------------------------------
    # Persisted state
    # ------------------------------------------------------------------

    async def load_state(self) -> None:
        """Adopt the persisted sync flag and last sync time.

        Remote user data wins; the local flag is the fallback when the remote
        is unreachable.  Without a stored identity sync stays disabled.
        """
        identity = read_identity(self._store)
        if identity is None:
            self._state.sync_enabled = False
            return

        loaded = False
        try:
            response: httpx.Response = await self._coordinator.execute(
                USER_DATA_KEY, lambda: self._client.get_user_data(identity)
            )
            if response.is_success:
                data = self._user_data(response)
                if data is not None:
                    self._state.sync_enabled = bool(data.get("stravaSyncEnabled", False))
                    self._state.last_sync_time = data.get("lastStravaSync") or None
                    loaded = True
            else:
                logger.warning("Loading user data rejected: HTTP %d", response.status_code)
        except Exception as exc:
            logger.warning("Loading user data failed: %s", exc)

        if not loaded:
            self._state.sync_enabled = self._store.get(SYNC_ENABLED_KEY) == "true"

        self._bus.publish(SyncEventName.STATE_LOADED, self._state.snapshot().to_dict())

    def _user_data(self, response: httpx.Response) -> dict | None:
        """The ``data`` object of a user-data body, or None when unusable.

        An unusable body is evicted from the request cache so the next load
        asks the remote again.
        """
        try:
            body = response.json() or {}
        except ValueError:
            body = None
        data = (body.get("data") or {}) if isinstance(body, dict) else None
        if isinstance(data, dict):
            return data

        logger.warning("Loading user data returned an unusable body: %r", response.text[:200])
        self._coordinator.invalidate(USER_DATA_KEY)
        return None

    async def save_state(self) -> None:
        """Persist the sync flag remotely and locally.  Never raises."""
        identity = read_identity(self._store)
        if identity is None:
            return

        enabled = self._state.sync_enabled
        data = {"stravaSyncEnabled": enabled, "lastStravaSync": self._state.last_sync_time}
        try:
            # Keyed by value so an enable and a disable never share one request.
            response: httpx.Response = await self._coordinator.execute(
                f"save-state:{enabled}",
                lambda: self._client.post_user_data(identity, data),
                use_cache=False,
            )
            if not response.is_success:
                logger.warning("Saving sync state rejected: HTTP %d", response.status_code)
        except Exception as exc:
            logger.warning("Saving sync state failed: %s", exc)

        flag = "true" if enabled else "false"
        await asyncio.to_thread(self._store.set, SYNC_ENABLED_KEY, flag)

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    def start_timers(self) -> None:
        """(Re)start the periodic credential check and sync when enabled."""
        if not self._state.sync_enabled:
            return
        timers = self._config.timers
        self._timers.set_timer(TOKEN_CHECK_TIMER, timers.token_check_interval, self._credentials.check_status)
        self._timers.set_timer(SYNC_TIMER, timers.sync_interval, self.run_sync)

    async def enable_sync(self) -> EnableResult:
        """Switch periodic sync on, or report where to re-authorize.

        Returns:
            EnableResult.  ``authorization_url`` is set when the credential is
            invalid and the user must re-authorize the remote service.
        """
        identity = read_identity(self._store)
        if identity is None:
            logger.warning("Cannot enable sync: not signed in")
            return EnableResult(enabled=False)

        if await self._credentials.check_status():
            self._state.sync_enabled = True
            await self.save_state()
            self.start_timers()
            self._bus.publish(SyncEventName.SYNC_ENABLED)
            self._timers.call_later(
                INITIAL_SYNC_TIMER, self._config.timers.initial_sync_delay, self.run_sync
            )
            logger.info("Sync enabled for user %s", identity.user_id)
            return EnableResult(enabled=True)

        logger.info("Credential invalid; requesting authorization URL")
        try:
            url = await self._authorization_url()
        except Exception as exc:
            logger.warning("Authorization URL unavailable: %s", exc)
            self._bus.publish(SyncEventName.SYNC_FAILED, {"error": str(exc)})
            return EnableResult(enabled=False)
        return EnableResult(enabled=False, authorization_url=url)

    async def _authorization_url(self) -> str:
        response: httpx.Response = await self._coordinator.execute(
            AUTH_URL_KEY, self._client.get_authorization_url, use_cache=False
        )
        if not response.is_success:
            raise AuthorizationUnavailable(f"authorization endpoint answered HTTP {response.status_code}")
        url = (response.json() or {}).get("url")
        if not url:
            raise AuthorizationUnavailable("authorization endpoint returned no URL")
        return url

    async def disable_sync(self) -> None:
        """Switch periodic sync off.  An attempt already running finishes."""
        self._state.sync_enabled = False
        self._timers.stop_all()
        await self.save_state()
        self._bus.publish(SyncEventName.SYNC_DISABLED)
        logger.info("Sync disabled")

    def apply_external_enabled(self, enabled: bool) -> None:
        """Adopt a sync flag changed by another context."""
        self._state.sync_enabled = enabled
        if enabled:
            self.start_timers()
        else:
            self._timers.stop_all()
        logger.info("Sync flag changed externally: enabled=%s", enabled)
