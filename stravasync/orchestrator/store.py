"""Local durable key-value store for credentials, flags and merged events.

The orchestrator only needs string get/set and a JSON convenience layer on
top.  Two implementations are provided:

    MemoryStore   - process-local dict, used in tests and ephemeral runs.
    JsonFileStore - a single JSON document on disk, rewritten atomically.

Key layout:
    current_user               - signed-in user identifier
    token                      - bearer credential for the remote API
    strava_sync_enabled        - "true" / "false"
    calendar_events_{user_id}  - merged events for one user
    calendar_events            - merged events for the last synced user
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol

from stravasync.orchestrator.base import Identity

logger = logging.getLogger("stravasync.orchestrator.store")

USER_KEY = "current_user"
TOKEN_KEY = "token"
SYNC_ENABLED_KEY = "strava_sync_enabled"
EVENTS_KEY = "calendar_events"


def user_events_key(user_id: str) -> str:
    return f"{EVENTS_KEY}_{user_id}"


class LocalStore(Protocol):
    """Minimal string key-value contract."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Store persisted as one JSON object in ``path``.

    Every write replaces the file through a fsynced temporary file in the
    same directory, so a crash never leaves a half-written document behind.
    Writes block; async callers run them in a worker thread.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, str] = self._read()

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            logger.warning("Store file %s is corrupt (%s); starting empty", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Store file %s does not hold an object; starting empty", self._path)
            return {}
        data: dict[str, str] = {}
        for key, value in raw.items():
            if value is None:
                continue
            if not isinstance(value, str):
                # Hand-edited files hold JSON literals; keep their JSON spelling.
                logger.warning("Store key '%s' holds a non-string value; normalizing", key)
                value = json.dumps(value, ensure_ascii=False)
            data[str(key)] = value
        return data

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, ensure_ascii=False, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        self._sync_directory()

    def _sync_directory(self) -> None:
        """Make the rename itself durable where the platform allows it."""
        try:
            dir_fd = os.open(self._path.parent, os.O_RDONLY)
        except OSError as exc:
            logger.debug("Cannot open %s for fsync: %s", self._path.parent, exc)
            return
        try:
            os.fsync(dir_fd)
        except OSError as exc:
            logger.debug("Directory fsync on %s failed: %s", self._path.parent, exc)
        finally:
            os.close(dir_fd)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()


# ---------------------------------------------------------------------------
# Typed helpers
# ---------------------------------------------------------------------------


def read_identity(store: LocalStore) -> Identity | None:
    """Return the signed-in identity, or None when not signed in."""
    user_id = store.get(USER_KEY)
    token = store.get(TOKEN_KEY)
    if not user_id or not token:
        return None
    return Identity(user_id=user_id, token=token)


def read_json(store: LocalStore, key: str, default: Any) -> Any:
    raw = store.get(key)
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable JSON under '%s'", key)
        return default


def write_json(store: LocalStore, key: str, value: Any) -> None:
    store.set(key, json.dumps(value, ensure_ascii=False))
