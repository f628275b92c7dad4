"""Shared fixtures and a fake remote API for orchestrator tests."""

from __future__ import annotations

import asyncio
import inspect
import json
from collections import Counter
from typing import Any, Callable

import httpx
import pytest

from stravasync.orchestrator.base import OrchestratorState
from stravasync.orchestrator.client import RemoteClient
from stravasync.orchestrator.config_loader import CoordinatorConfig, SyncConfig, TimerConfig
from stravasync.orchestrator.coordinator import RequestCoordinator
from stravasync.orchestrator.credentials import CredentialMonitor
from stravasync.orchestrator.engine import SyncEngine
from stravasync.orchestrator.events import EventBus, SyncEventName
from stravasync.orchestrator.facade import SyncOrchestrator
from stravasync.orchestrator.store import TOKEN_KEY, USER_KEY, MemoryStore
from stravasync.orchestrator.timers import TimerRegistry

TEST_USER_ID = "user-42"
TEST_TOKEN = "test-bearer-token"

RUN_ACTIVITY = {
    "id": 1,
    "type": "Run",
    "distance": 5000,
    "moving_time": 1800,
    "start_date": "2024-01-01T08:00:00Z",
}

RIDE_ACTIVITY = {
    "id": 2,
    "type": "Ride",
    "distance": 24000,
    "moving_time": 3660,
    "start_date": "2024-01-02T17:30:00Z",
}


# ---------------------------------------------------------------------------
# Fake remote API
# ---------------------------------------------------------------------------


class FakeRemote:
    """Route table behind an httpx.MockTransport.

    Each route maps (method, path) to one of:
        - an httpx.Response
        - an Exception instance (raised for every call)
        - a list of the above, consumed one per call (the last one repeats)
        - a callable(request) returning a Response, sync or async
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {
            ("GET", f"/api/user-data/{TEST_USER_ID}"): httpx.Response(
                200, json={"data": {"stravaSyncEnabled": True, "lastStravaSync": None}}
            ),
            ("POST", f"/api/user-data/{TEST_USER_ID}"): httpx.Response(200, json={"ok": True}),
            ("GET", "/api/strava/check-token"): httpx.Response(200, json={"valid": True}),
            ("POST", "/api/strava/refresh-token"): httpx.Response(200, json={"ok": True}),
            ("GET", "/api/strava/activities"): httpx.Response(
                200, json={"activities": [RUN_ACTIVITY]}
            ),
            ("GET", "/api/strava/auth"): httpx.Response(
                200, json={"url": "https://www.strava.com/oauth/authorize?client_id=1"}
            ),
        }
        self.calls: Counter[tuple[str, str]] = Counter()
        self.requests: list[httpx.Request] = []

    def set(self, method: str, path: str, responder: Any) -> None:
        self.routes[(method, path)] = responder

    def count(self, method: str, path: str) -> int:
        return self.calls[(method, path)]

    def bodies(self, method: str, path: str) -> list[Any]:
        return [
            json.loads(r.content or b"null")
            for r in self.requests
            if r.method == method and r.url.path == path
        ]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        key = (request.method, request.url.path)
        self.calls[key] += 1
        self.requests.append(request)

        responder = self.routes.get(key)
        if responder is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(responder, list):
            responder = responder.pop(0) if len(responder) > 1 else responder[0]
        if isinstance(responder, Exception):
            raise responder
        if callable(responder):
            result = responder(request)
            if inspect.isawaitable(result):
                result = await result
            return result
        return responder


class EventRecorder:
    """Observer that records every event it sees."""

    def __init__(self) -> None:
        self.events: list[tuple[SyncEventName, Any]] = []

    def __call__(self, event: SyncEventName, payload: Any) -> None:
        self.events.append((event, payload))

    @property
    def names(self) -> list[SyncEventName]:
        return [name for name, _ in self.events]

    def payloads(self, name: SyncEventName) -> list[Any]:
        return [payload for event, payload in self.events if event == name]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Fast timings so tests never wait on real intervals."""
    return SyncConfig(
        timers=TimerConfig(
            token_check_interval=60.0,
            sync_interval=60.0,
            initial_sync_delay=0.01,
            retry_after_refresh_delay=0.01,
        ),
        coordinator=CoordinatorConfig(cache_timeout=300.0, max_retries=3, retry_delay=0.0),
        activity_labels={"Run": "跑步", "Ride": "騎車", "Swim": "游泳"},
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore({USER_KEY: TEST_USER_ID, TOKEN_KEY: TEST_TOKEN})


@pytest.fixture
def anonymous_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def client(remote: FakeRemote) -> RemoteClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(remote), base_url="http://remote.test")
    return RemoteClient(http_client=http)


@pytest.fixture
def state() -> OrchestratorState:
    return OrchestratorState()


@pytest.fixture
def coordinator(sync_config: SyncConfig) -> RequestCoordinator:
    return RequestCoordinator(sync_config.coordinator)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    rec = EventRecorder()
    bus.subscribe(rec)
    return rec


@pytest.fixture
def timers() -> TimerRegistry:
    return TimerRegistry()


@pytest.fixture
def credentials(
    state: OrchestratorState,
    store: MemoryStore,
    client: RemoteClient,
    coordinator: RequestCoordinator,
    bus: EventBus,
) -> CredentialMonitor:
    return CredentialMonitor(state, store, client, coordinator, bus)


@pytest.fixture
def engine(
    state: OrchestratorState,
    store: MemoryStore,
    client: RemoteClient,
    coordinator: RequestCoordinator,
    credentials: CredentialMonitor,
    timers: TimerRegistry,
    bus: EventBus,
    sync_config: SyncConfig,
) -> SyncEngine:
    return SyncEngine(
        state=state,
        store=store,
        client=client,
        coordinator=coordinator,
        credentials=credentials,
        timers=timers,
        bus=bus,
        config=sync_config,
    )


@pytest.fixture
def orchestrator(
    store: MemoryStore, client: RemoteClient, sync_config: SyncConfig
) -> SyncOrchestrator:
    return SyncOrchestrator.create(store, client, sync_config)
