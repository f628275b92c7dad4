"""Orchestrator facade: one object the host builds, starts and closes.

Usage::

    orchestrator = SyncOrchestrator.create(store, client)
    await orchestrator.start()
    orchestrator.subscribe(lambda event, payload: ...)
    await orchestrator.enable_sync()
    ...
    await orchestrator.close()
"""

from __future__ import annotations

import logging
from typing import Any

from stravasync.orchestrator.base import EnableResult, OrchestratorState, StateSnapshot, SyncResult
from stravasync.orchestrator.client import RemoteClient
from stravasync.orchestrator.config_loader import SyncConfig, get_sync_config
from stravasync.orchestrator.coordinator import RequestCoordinator
from stravasync.orchestrator.credentials import CredentialMonitor
from stravasync.orchestrator.engine import ACTIVITIES_KEY, SyncEngine
from stravasync.orchestrator.events import EventBus, Observer, RecentEvents
from stravasync.orchestrator.signals import Signal, SignalChannel, StorageChanged, VisibilityResumed
from stravasync.orchestrator.store import SYNC_ENABLED_KEY, LocalStore
from stravasync.orchestrator.timers import TimerRegistry

logger = logging.getLogger("stravasync.orchestrator")


class SyncOrchestrator:
    """Compose timers, coordinator, credential monitor, engine and bus.

    Public methods never raise; failures surface as events and as the
    ``error_count`` in ``get_state()``.
    """

    def __init__(
        self,
        store: LocalStore,
        client: RemoteClient,
        config: SyncConfig,
        coordinator: RequestCoordinator,
        timers: TimerRegistry,
        bus: EventBus,
    ) -> None:
        self._state = OrchestratorState()
        self._client = client
        self._coordinator = coordinator
        self._timers = timers
        self._bus = bus
        self.recent_events = RecentEvents()
        self._bus.subscribe(self.recent_events)

        self.credentials = CredentialMonitor(self._state, store, client, coordinator, bus)
        self.engine = SyncEngine(
            state=self._state,
            store=store,
            client=client,
            coordinator=coordinator,
            credentials=self.credentials,
            timers=timers,
            bus=bus,
            config=config,
        )
        self._signals = SignalChannel(self._handle_signal)
        self._started = False

    @classmethod
    def create(
        cls,
        store: LocalStore,
        client: RemoteClient,
        config: SyncConfig | None = None,
    ) -> "SyncOrchestrator":
        """Build an orchestrator with default collaborators."""
        config = config or get_sync_config()
        return cls(
            store=store,
            client=client,
            config=config,
            coordinator=RequestCoordinator(config.coordinator),
            timers=TimerRegistry(),
            bus=EventBus(),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load state, check the credential, start timers and the signal listener."""
        if self._started:
            return
        self._timers.open()
        await self.engine.load_state()
        await self.credentials.check_status()
        self.engine.start_timers()
        self._signals.start()
        self._started = True
        logger.info("Sync orchestrator started: %s", self._state.snapshot().to_dict())

    async def close(self) -> None:
        """Stop listening and cancel every timer; running callbacks finish first.

        The timer registry stays closed until the next ``start()``, so work
        that finishes during shutdown cannot schedule a retry.
        """
        await self._signals.stop()
        self._timers.close()
        await self._timers.drain()
        self._started = False
        logger.info("Sync orchestrator closed")

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def get_state(self) -> StateSnapshot:
        return self._state.snapshot()

    def get_stats(self) -> dict[str, Any]:
        """State plus operational counters."""
        return {
            **self._state.snapshot().to_dict(),
            "credential_status": self.credentials.status.value,
            "engine": self.engine.phase.value,
            "active_timers": self._timers.active_count,
            "pending_timers": self._timers.pending_count,
            "cached_requests": self._coordinator.cached_count,
            "in_flight_requests": self._coordinator.in_flight_count,
            "observers": len(self._bus),
        }

    async def enable_sync(self) -> EnableResult:
        return await self.engine.enable_sync()

    async def disable_sync(self) -> None:
        await self.engine.disable_sync()

    async def force_sync(self) -> SyncResult:
        """Sync now regardless of the enabled flag, with fresh activities."""
        if not self._state.sync_in_progress:
            self._coordinator.invalidate(ACTIVITIES_KEY)
        return await self.engine.run_sync(force=True)

    async def force_credential_refresh(self) -> bool:
        return await self.credentials.refresh()

    def subscribe(self, callback: Observer) -> None:
        self._bus.subscribe(callback)

    def unsubscribe(self, callback: Observer) -> None:
        self._bus.unsubscribe(callback)

    # ------------------------------------------------------------------
    # Host signals
    # ------------------------------------------------------------------

    def post_signal(self, signal: Signal) -> None:
        self._signals.post(signal)

    async def wait_for_signals(self) -> None:
        """Wait until every posted signal has been handled."""
        await self._signals.join()

    async def _handle_signal(self, signal: Signal) -> None:
        if isinstance(signal, VisibilityResumed):
            if self._state.sync_enabled:
                await self.credentials.check_status()
        elif isinstance(signal, StorageChanged):
            if signal.key == SYNC_ENABLED_KEY:
                self.engine.apply_external_enabled(signal.new_value == "true")
