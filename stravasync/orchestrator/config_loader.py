"""Load, validate, and hot-reload the orchestrator configuration.

The config lives in ``sync_config.yaml`` alongside this module.  It is loaded
once and cached; ``reload_sync_config()`` re-reads it from disk.

Usage::

    from stravasync.orchestrator.config_loader import get_sync_config

    config = get_sync_config()
    config.coordinator.max_retries      # 3
    config.activity_label("Run")        # "跑步"
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("stravasync.orchestrator.config")

_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class TimerConfig:
    """Periodic and one-shot schedule settings (seconds)."""

    token_check_interval: float = 300.0
    sync_interval: float = 600.0
    initial_sync_delay: float = 1.0
    retry_after_refresh_delay: float = 1.0


@dataclass
class CoordinatorConfig:
    """Request coordinator cache and retry settings."""

    cache_timeout: float = 300.0
    max_retries: int = 3
    retry_delay: float = 2.0


@dataclass
class SyncConfig:
    """Complete, validated orchestrator configuration.

    Attributes:
        version:         Config schema version string.
        timers:          Timer intervals and delays.
        coordinator:     Cache timeout and retry policy.
        activity_labels: Remote activity type code -> display label.
    """

    version: str = "1.0"
    timers: TimerConfig = field(default_factory=TimerConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    activity_labels: dict[str, str] = field(default_factory=dict)

    def activity_label(self, activity_type: str) -> str:
        """Return the display label for a remote activity type code.

        Unknown codes are returned unchanged.
        """
        return self.activity_labels.get(activity_type, activity_type)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Missing sections fall back to defaults.  Every problem found is collected
    and reported in a single ConfigValidationError.

    Args:
        raw: Parsed YAML dict.

    Returns:
        Validated SyncConfig instance.

    Raises:
        ConfigValidationError: If any value is missing its expected type or range.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, default: float, where: str, *, minimum: float = 0.0) -> float:
        value: Any = section.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{where}.{key} must be a number, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{where}.{key} = {number} must be >= {minimum}")
        return number

    version = str(raw.get("version", "1.0"))

    # ── Timers ──
    timers_raw = raw.get("timers") or {}
    defaults = TimerConfig()
    timers = TimerConfig(
        token_check_interval=_number(
            timers_raw, "token_check_interval", defaults.token_check_interval, "timers", minimum=1.0
        ),
        sync_interval=_number(timers_raw, "sync_interval", defaults.sync_interval, "timers", minimum=1.0),
        initial_sync_delay=_number(timers_raw, "initial_sync_delay", defaults.initial_sync_delay, "timers"),
        retry_after_refresh_delay=_number(
            timers_raw, "retry_after_refresh_delay", defaults.retry_after_refresh_delay, "timers"
        ),
    )

    # ── Coordinator ──
    coord_raw = raw.get("coordinator") or {}
    coord_defaults = CoordinatorConfig()
    coordinator = CoordinatorConfig(
        cache_timeout=_number(coord_raw, "cache_timeout", coord_defaults.cache_timeout, "coordinator"),
        max_retries=int(_number(coord_raw, "max_retries", coord_defaults.max_retries, "coordinator")),
        retry_delay=_number(coord_raw, "retry_delay", coord_defaults.retry_delay, "coordinator"),
    )

    # ── Activity labels ──
    labels_raw = raw.get("activity_labels") or {}
    activity_labels: dict[str, str] = {}
    if not isinstance(labels_raw, dict):
        errors.append("activity_labels must be a mapping of type code → label")
    else:
        for code, label in labels_raw.items():
            if not isinstance(label, str) or not label:
                errors.append(f"activity_labels.{code} must be a non-empty string, got {label!r}")
                continue
            activity_labels[str(code)] = label

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        timers=timers,
        coordinator=coordinator,
        activity_labels=activity_labels,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.

    Returns:
        Validated SyncConfig instance.
    """
    target = path or _CONFIG_PATH
    config = _validate_and_build(_load_yaml(target))
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error re-raised.

    Args:
        path: Override path to YAML. Defaults to the bundled sync_config.yaml.

    Returns:
        The newly loaded SyncConfig.
    """
    global _config
    new_config = load_sync_config(path)
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
