"""Lifecycle event fan-out for the sync orchestrator.

Observers are plain callables ``(event_name, payload) -> None``.  A failing
observer is logged and skipped; it never blocks delivery to the others and
never touches orchestrator state.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from stravasync.orchestrator.base import utc_now_iso

logger = logging.getLogger("stravasync.orchestrator.events")


class SyncEventName(str, Enum):
    STATE_LOADED = "state_loaded"
    CREDENTIAL_STATUS_CHANGED = "credential_status_changed"
    CREDENTIAL_REFRESHED = "credential_refreshed"
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    SYNC_ENABLED = "sync_enabled"
    SYNC_DISABLED = "sync_disabled"


Observer = Callable[[SyncEventName, Any], None]


class EventBus:
    """In-process publish/subscribe for orchestrator lifecycle events."""

    def __init__(self) -> None:
        self._observers: set[Observer] = set()

    def subscribe(self, callback: Observer) -> None:
        self._observers.add(callback)

    def unsubscribe(self, callback: Observer) -> None:
        self._observers.discard(callback)

    def publish(self, event: SyncEventName, payload: Any = None) -> None:
        """Deliver ``event`` to every observer subscribed right now."""
        logger.debug("Event %s: %s", event.value, payload)
        for callback in list(self._observers):
            try:
                callback(event, payload)
            except Exception:
                logger.exception("Observer %r failed on '%s'", callback, event.value)

    def __len__(self) -> int:
        return len(self._observers)


@dataclass
class RecordedEvent:
    name: str
    payload: Any
    at: str = field(default_factory=utc_now_iso)


class RecentEvents:
    """Observer keeping the last ``maxlen`` events in memory.

    Usage::

        recent = RecentEvents(maxlen=50)
        bus.subscribe(recent)
        recent.items()
    """

    def __init__(self, maxlen: int = 50) -> None:
        self._events: deque[RecordedEvent] = deque(maxlen=maxlen)

    def __call__(self, event: SyncEventName, payload: Any) -> None:
        self._events.append(RecordedEvent(name=event.value, payload=payload))

    def items(self) -> list[RecordedEvent]:
        return list(self._events)
