"""Request coordinator: de-duplication, short-lived caching and fixed-delay retry.

Every remote call the orchestrator makes goes through ``RequestCoordinator``:

1. A fresh cache entry for the key is returned without a network call.
2. A request already in flight for the key is awaited by every caller, so
   concurrent callers share one attempt sequence.
3. Otherwise the operation runs, retrying up to ``max_retries`` more times
   with a fixed ``retry_delay`` between attempts.
4. A successful result is cached under the key.

Cache entries expire lazily: an entry is checked on read and dropped once it
is older than ``cache_timeout``.  Nothing sweeps the cache in the background.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from stravasync.orchestrator.config_loader import CoordinatorConfig

logger = logging.getLogger("stravasync.orchestrator.coordinator")

Operation = Callable[[], Awaitable[Any]]


@dataclass
class CacheEntry:
    """A cached result.

    Attributes:
        key:        Request key.
        payload:    The operation's result.
        created_at: Monotonic clock reading when the entry was stored.
    """

    key: str
    payload: Any
    created_at: float


def is_cacheable(result: Any) -> bool:
    """Return True if a result may be cached.

    HTTP responses are cacheable only when they report success; any other
    result is cacheable as-is.
    """
    return bool(getattr(result, "is_success", True))


class RequestCoordinator:
    """Single chokepoint for remote calls.

    Usage::

        coordinator = RequestCoordinator(CoordinatorConfig(max_retries=3))
        response = await coordinator.execute(
            "strava-activities", lambda: client.get_activities(identity)
        )
    """

    def __init__(
        self,
        config: CoordinatorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> None:
        """Initialize the coordinator.

        Args:
            config:   Cache timeout and retry policy.  Defaults to
                      300s / 3 retries / 2s delay.
            clock:    Monotonic time source, injectable for tests.
            retry_on: Exception types that trigger a retry.  Anything else
                      propagates on the first failure.
        """
        self._config = config or CoordinatorConfig()
        self._clock = clock
        self._retry_on = retry_on
        self._cache: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, asyncio.Task] = {}

    @property
    def config(self) -> CoordinatorConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, key: str, operation: Operation, *, use_cache: bool = True) -> Any:
        """Run ``operation`` under ``key`` with caching, de-duplication and retry.

        Args:
            key:       Logical request key.  Callers sharing a key share results.
            operation: Zero-argument coroutine function performing the call.
            use_cache: When False the cache is neither read nor written; in-flight
                       de-duplication and retry still apply.

        Returns:
            The operation's result (possibly a cached or shared one).

        Raises:
            Exception: The last failure once all attempts are exhausted.
        """
        if use_cache:
            entry = self._cached(key)
            if entry is not None:
                logger.debug("Cache hit for '%s'", key)
                return entry.payload

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._attempt(key, operation, use_cache), name=f"request:{key}"
            )
            self._in_flight[key] = task
        else:
            logger.debug("Joining in-flight request '%s'", key)

        # A cancelled caller must not cancel the attempt other callers share.
        return await asyncio.shield(task)

    def invalidate(self, key: str) -> None:
        """Drop the cache entry for ``key``."""
        self._cache.pop(key, None)

    def clear(self) -> None:
        """Drop every cache entry."""
        self._cache.clear()

    @property
    def cached_count(self) -> int:
        """Entries currently held, including expired ones not yet read."""
        return len(self._cache)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cached(self, key: str) -> CacheEntry | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at >= self._config.cache_timeout:
            del self._cache[key]
            return None
        return entry

    async def _attempt(self, key: str, operation: Operation, use_cache: bool) -> Any:
        try:
            result = await self._with_retry(key, operation)
            if use_cache and is_cacheable(result):
                self._cache[key] = CacheEntry(key=key, payload=result, created_at=self._clock())
            return result
        finally:
            self._in_flight.pop(key, None)

    async def _with_retry(self, key: str, operation: Operation) -> Any:
        max_retries = self._config.max_retries
        for attempt in range(max_retries + 1):
            try:
                return await operation()
            except self._retry_on as exc:
                if attempt == max_retries:
                    logger.error("Request '%s' failed after %d attempt(s): %s", key, attempt + 1, exc)
                    raise
                logger.warning(
                    "Request '%s' attempt %d/%d failed: %s. Retrying in %.1fs...",
                    key,
                    attempt + 1,
                    max_retries + 1,
                    exc,
                    self._config.retry_delay,
                )
                await asyncio.sleep(self._config.retry_delay)
        raise RuntimeError("Unexpected retry loop exit")
