"""Tests for request de-duplication, caching and retry."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from stravasync.orchestrator.config_loader import CoordinatorConfig
from stravasync.orchestrator.coordinator import RequestCoordinator, is_cacheable


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingOperation:
    """Operation that fails a fixed number of times, then returns ``result``."""

    def __init__(self, result: object = "ok", failures: int = 0, exc: Exception | None = None) -> None:
        self.result = result
        self.failures = failures
        self.exc = exc or ConnectionError("network down")
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return self.result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_coordinator(clock: FakeClock) -> RequestCoordinator:
    return RequestCoordinator(
        CoordinatorConfig(cache_timeout=300.0, max_retries=3, retry_delay=0.0), clock=clock
    )


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class TestCaching:
    @pytest.mark.asyncio
    async def test_second_call_within_timeout_hits_cache(
        self, fast_coordinator: RequestCoordinator, clock: FakeClock
    ) -> None:
        op = CountingOperation(result={"activities": []})

        first = await fast_coordinator.execute("strava-activities", op)
        clock.advance(299)
        second = await fast_coordinator.execute("strava-activities", op)

        assert op.calls == 1
        assert second is first

    @pytest.mark.asyncio
    async def test_expired_entry_triggers_new_call(
        self, fast_coordinator: RequestCoordinator, clock: FakeClock
    ) -> None:
        op = CountingOperation()

        await fast_coordinator.execute("user-data", op)
        clock.advance(300)
        await fast_coordinator.execute("user-data", op)

        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_expired_entry_is_dropped_lazily(
        self, fast_coordinator: RequestCoordinator, clock: FakeClock
    ) -> None:
        await fast_coordinator.execute("user-data", CountingOperation())
        clock.advance(301)

        # Nothing reads the key yet, so the stale entry is still held.
        assert fast_coordinator.cached_count == 1

        await fast_coordinator.execute("other", CountingOperation())
        assert fast_coordinator.cached_count == 2

    @pytest.mark.asyncio
    async def test_use_cache_false_skips_read_and_write(
        self, fast_coordinator: RequestCoordinator
    ) -> None:
        op = CountingOperation()

        await fast_coordinator.execute("cloud-sync", op, use_cache=False)
        await fast_coordinator.execute("cloud-sync", op, use_cache=False)

        assert op.calls == 2
        assert fast_coordinator.cached_count == 0

    @pytest.mark.asyncio
    async def test_unsuccessful_response_is_not_cached(
        self, fast_coordinator: RequestCoordinator
    ) -> None:
        op = CountingOperation(result=httpx.Response(401))

        await fast_coordinator.execute("strava-activities", op)
        await fast_coordinator.execute("strava-activities", op)

        assert op.calls == 2
        assert fast_coordinator.cached_count == 0

    @pytest.mark.asyncio
    async def test_invalidate_forces_refetch(self, fast_coordinator: RequestCoordinator) -> None:
        op = CountingOperation()

        await fast_coordinator.execute("token-check", op)
        fast_coordinator.invalidate("token-check")
        await fast_coordinator.execute("token-check", op)

        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_clear_drops_every_entry(self, fast_coordinator: RequestCoordinator) -> None:
        await fast_coordinator.execute("a", CountingOperation())
        await fast_coordinator.execute("b", CountingOperation())

        fast_coordinator.clear()
        assert fast_coordinator.cached_count == 0

    def test_is_cacheable(self) -> None:
        assert is_cacheable(httpx.Response(200))
        assert not is_cacheable(httpx.Response(404))
        assert is_cacheable({"plain": "value"})


# ---------------------------------------------------------------------------
# De-duplication
# ---------------------------------------------------------------------------


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(
        self, fast_coordinator: RequestCoordinator
    ) -> None:
        gate = asyncio.Event()
        calls = 0

        async def op() -> str:
            nonlocal calls
            calls += 1
            await gate.wait()
            return "shared"

        first = asyncio.create_task(fast_coordinator.execute("strava-activities", op))
        second = asyncio.create_task(fast_coordinator.execute("strava-activities", op))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert fast_coordinator.in_flight_count == 1
        gate.set()
        results = await asyncio.gather(first, second)

        assert results == ["shared", "shared"]
        assert calls == 1
        assert fast_coordinator.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_shared_failure_reaches_every_caller(self) -> None:
        coordinator = RequestCoordinator(CoordinatorConfig(max_retries=0, retry_delay=0.0))
        gate = asyncio.Event()

        async def op() -> str:
            await gate.wait()
            raise ConnectionError("down")

        first = asyncio.create_task(coordinator.execute("k", op))
        second = asyncio.create_task(coordinator.execute("k", op))
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(first, second, return_exceptions=True)

        assert all(isinstance(r, ConnectionError) for r in results)
        assert coordinator.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_attempt(
        self, fast_coordinator: RequestCoordinator
    ) -> None:
        gate = asyncio.Event()

        async def op() -> str:
            await gate.wait()
            return "done"

        first = asyncio.create_task(fast_coordinator.execute("k", op))
        second = asyncio.create_task(fast_coordinator.execute("k", op))
        await asyncio.sleep(0)

        first.cancel()
        gate.set()

        assert await second == "done"
        with pytest.raises(asyncio.CancelledError):
            await first

    @pytest.mark.asyncio
    async def test_different_keys_run_independently(
        self, fast_coordinator: RequestCoordinator
    ) -> None:
        a = CountingOperation(result="a")
        b = CountingOperation(result="b")

        results = await asyncio.gather(
            fast_coordinator.execute("a", a), fast_coordinator.execute("b", b)
        )

        assert results == ["a", "b"]
        assert (a.calls, b.calls) == (1, 1)


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_max_retries_failures(
        self, fast_coordinator: RequestCoordinator
    ) -> None:
        op = CountingOperation(result="finally", failures=3)

        result = await fast_coordinator.execute("strava-activities", op)

        assert result == "finally"
        assert op.calls == 4

    @pytest.mark.asyncio
    async def test_raises_after_all_attempts_fail(
        self, fast_coordinator: RequestCoordinator, caplog: pytest.LogCaptureFixture
    ) -> None:
        op = CountingOperation(failures=4)

        with pytest.raises(ConnectionError):
            await fast_coordinator.execute("strava-activities", op)

        assert op.calls == 4
        assert fast_coordinator.in_flight_count == 0
        assert fast_coordinator.cached_count == 0
        assert "failed after 4 attempt(s)" in caplog.text

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self) -> None:
        coordinator = RequestCoordinator(CoordinatorConfig(max_retries=0, retry_delay=0.0))
        op = CountingOperation(failures=1)

        with pytest.raises(ConnectionError):
            await coordinator.execute("k", op)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self) -> None:
        coordinator = RequestCoordinator(
            CoordinatorConfig(max_retries=3, retry_delay=0.0), retry_on=(ConnectionError,)
        )
        op = CountingOperation(failures=1, exc=ValueError("bad payload"))

        with pytest.raises(ValueError):
            await coordinator.execute("k", op)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_waits_fixed_delay_between_attempts(self) -> None:
        coordinator = RequestCoordinator(CoordinatorConfig(max_retries=2, retry_delay=0.02))
        op = CountingOperation(failures=2)
        loop = asyncio.get_running_loop()

        started = loop.time()
        await coordinator.execute("k", op)

        assert op.calls == 3
        assert loop.time() - started >= 0.04
