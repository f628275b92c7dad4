"""stravasync background sync orchestrator.

Pulls activities from the remote fitness service, reconciles them into the
local per-day calendar events, and mirrors the result to the remote
user-data endpoint while keeping the remote credential valid.

Core modules:
    timers        - named recurring and one-shot timers
    coordinator   - request de-duplication, caching and fixed-delay retry
    credentials   - credential validity checks and refresh
    engine        - sync state machine and fetch → reconcile → persist pipeline
    events        - lifecycle event bus
    facade        - SyncOrchestrator, the object the host builds and drives

Supporting modules:
    base          - shared dataclasses
    client        - httpx transport for the remote endpoints
    config_loader - load/validate sync_config.yaml
    reconcile     - activity → calendar event mapping and de-duplicated merge
    signals       - inbound host signals
    store         - local durable key-value store
"""

from stravasync.orchestrator.base import (
    ActivityRecord,
    EnableResult,
    Identity,
    OrchestratorState,
    ReconciledEvent,
    StateSnapshot,
    SyncResult,
    SyncStatus,
)
from stravasync.orchestrator.config_loader import SyncConfig, get_sync_config
from stravasync.orchestrator.events import EventBus, SyncEventName
from stravasync.orchestrator.facade import SyncOrchestrator
from stravasync.orchestrator.signals import StorageChanged, VisibilityResumed

__all__ = [
    "ActivityRecord",
    "EnableResult",
    "EventBus",
    "Identity",
    "OrchestratorState",
    "ReconciledEvent",
    "StateSnapshot",
    "StorageChanged",
    "SyncConfig",
    "SyncEventName",
    "SyncOrchestrator",
    "SyncResult",
    "SyncStatus",
    "VisibilityResumed",
    "get_sync_config",
]
