"""Tests for the local key-value stores and their JSON helpers."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from stravasync.orchestrator.base import Identity
from stravasync.orchestrator.store import (
    SYNC_ENABLED_KEY,
    TOKEN_KEY,
    USER_KEY,
    JsonFileStore,
    MemoryStore,
    read_identity,
    read_json,
    user_events_key,
    write_json,
)


class TestMemoryStore:
    def test_get_set_delete(self) -> None:
        store = MemoryStore()
        store.set("strava_sync_enabled", "true")
        assert store.get("strava_sync_enabled") == "true"

        store.delete("strava_sync_enabled")
        assert store.get("strava_sync_enabled") is None

    def test_delete_missing_key_is_noop(self) -> None:
        MemoryStore().delete("missing")


class TestJsonFileStore:
    def test_values_survive_reopen(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        JsonFileStore(path).set(USER_KEY, "u1")

        assert JsonFileStore(path).get(USER_KEY) == "u1"

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "store.json"
        JsonFileStore(path).set("k", "v")
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}

    def test_non_ascii_values_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        write_json(JsonFileStore(path), "calendar_events", {"2024-01-01": [{"type": "跑步"}]})

        reopened = JsonFileStore(path)
        assert read_json(reopened, "calendar_events", {}) == {"2024-01-01": [{"type": "跑步"}]}

    def test_corrupt_file_starts_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")

        store = JsonFileStore(path)
        assert store.get(USER_KEY) is None

    def test_non_object_file_starts_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert JsonFileStore(path).get("0") is None

    def test_delete_persists(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        store.set("a", "1")
        store.delete("a")

        assert JsonFileStore(path).get("a") is None

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "store.json")
        store.set("a", "1")
        store.set("b", "2")

        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]


class TestHelpers:
    def test_read_identity(self) -> None:
        store = MemoryStore({USER_KEY: "u1", TOKEN_KEY: "t"})
        identity = read_identity(store)

        assert identity == Identity(user_id="u1", token="t")
        assert identity.auth_headers == {"Authorization": "Bearer t"}

    def test_read_identity_requires_both_keys(self) -> None:
        assert read_identity(MemoryStore({USER_KEY: "u1"})) is None
        assert read_identity(MemoryStore({TOKEN_KEY: "t"})) is None
        assert read_identity(MemoryStore({USER_KEY: "", TOKEN_KEY: "t"})) is None

    def test_read_json_default_for_missing_or_broken(self) -> None:
        store = MemoryStore({"broken": "{oops"})
        assert read_json(store, "missing", {}) == {}
        assert read_json(store, "broken", []) == []

    def test_user_events_key(self) -> None:
        assert user_events_key("u1") == "calendar_events_u1"


class TestJsonFileStoreFileFormat:
    def test_hand_edited_literals_keep_json_spelling(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = tmp_path / "store.json"
        path.write_text(
            json.dumps({SYNC_ENABLED_KEY: True, "count": 3, "user": "u1", "gone": None}),
            encoding="utf-8",
        )

        store = JsonFileStore(path)

        assert store.get(SYNC_ENABLED_KEY) == "true"
        assert store.get("count") == "3"
        assert store.get("user") == "u1"
        assert store.get("gone") is None
        assert "non-string value" in caplog.text

    def test_writes_are_fsynced(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        fsync = MagicMock(wraps=os.fsync)
        monkeypatch.setattr(os, "fsync", fsync)

        JsonFileStore(tmp_path / "store.json").set("a", "1")

        assert fsync.call_count >= 1
