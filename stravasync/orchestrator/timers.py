"""Named recurring and one-shot timers on the asyncio event loop.

Each timer is an asyncio task registered under a name.  Registering a name
that already has a timer cancels the old one first, so a name never owns
more than one task.

Usage::

    timers = TimerRegistry()
    timers.set_timer("sync", 600, engine.run_sync)
    timers.call_later("sync-retry", 1.0, engine.run_sync)
    ...
    timers.close()
    await timers.drain()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger("stravasync.orchestrator.timers")

TimerCallback = Callable[[], "Awaitable[Any] | Any"]


async def _invoke(name: str, callback: TimerCallback) -> None:
    """Run one callback, logging instead of propagating its failure."""
    try:
        result = callback()
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Timer '%s' callback failed", name)


class TimerRegistry:
    """Own every timer the orchestrator schedules.

    Recurring timers fire every ``interval`` seconds until cancelled.  One-shot
    calls fire once after ``delay`` seconds.  Callback failures are logged and
    never stop a recurring timer.
    """

    def __init__(self) -> None:
        self._recurring: dict[str, asyncio.Task] = {}
        self._one_shots: dict[str, asyncio.Task] = {}
        self._firing: set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def set_timer(self, name: str, interval: float, callback: TimerCallback) -> None:
        """Register ``callback`` to run every ``interval`` seconds.

        Args:
            name:     Timer name; an existing timer with this name is cancelled.
            interval: Seconds between invocations.
            callback: Plain function or coroutine function taking no arguments.
        """
        if self._refuse(name):
            return
        self.cancel(name)
        task = asyncio.get_running_loop().create_task(
            self._run_recurring(name, interval, callback), name=f"timer:{name}"
        )
        self._recurring[name] = task
        logger.debug("Timer '%s' set (every %.1fs)", name, interval)

    def call_later(self, name: str, delay: float, callback: TimerCallback) -> None:
        """Run ``callback`` once after ``delay`` seconds.

        A pending one-shot with the same name is cancelled first.
        """
        if self._refuse(name):
            return
        self._cancel_task(self._one_shots.pop(name, None))
        task = asyncio.get_running_loop().create_task(
            self._run_once(name, delay, callback), name=f"once:{name}"
        )
        self._one_shots[name] = task
        logger.debug("One-shot '%s' scheduled in %.1fs", name, delay)

    def cancel(self, name: str) -> None:
        """Cancel the recurring timer registered under ``name``, if any."""
        self._cancel_task(self._recurring.pop(name, None))

    def stop_all(self) -> None:
        """Cancel every recurring timer and pending one-shot."""
        count = len(self._recurring) + len(self._one_shots)
        for task in [*self._recurring.values(), *self._one_shots.values()]:
            self._cancel_task(task)
        self._recurring.clear()
        self._one_shots.clear()
        if count:
            logger.info("Stopped %d timer(s)", count)

    def close(self) -> None:
        """Stop every timer and refuse new ones until ``open()``.

        Callbacks still running may try to schedule follow-up work; those
        registrations are dropped.
        """
        self._closed = True
        self.stop_all()

    def open(self) -> None:
        """Accept registrations again after ``close()``."""
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _refuse(self, name: str) -> bool:
        if self._closed:
            logger.debug("Registry closed; timer '%s' not scheduled", name)
        return self._closed

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def active_count(self) -> int:
        """Number of registered recurring timers."""
        return len(self._recurring)

    @property
    def pending_count(self) -> int:
        """Number of one-shot calls that have not fired yet."""
        return len(self._one_shots)

    def has_timer(self, name: str) -> bool:
        return name in self._recurring

    def has_pending(self, name: str) -> bool:
        return name in self._one_shots

    # ------------------------------------------------------------------
    # Task bodies
    # ------------------------------------------------------------------

    async def _run_recurring(self, name: str, interval: float, callback: TimerCallback) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._fire(name, callback)

    async def _run_once(self, name: str, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        self._one_shots.pop(name, None)
        await self._fire(name, callback)

    async def _fire(self, name: str, callback: TimerCallback) -> None:
        # Cancelling a timer stops future ticks only; a callback that already
        # started runs to completion in its own task.
        task = asyncio.get_running_loop().create_task(_invoke(name, callback))
        self._firing.add(task)
        task.add_done_callback(self._firing.discard)
        await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for callbacks that are still running after cancellation."""
        if self._firing:
            await asyncio.gather(*list(self._firing), return_exceptions=True)

    @staticmethod
    def _cancel_task(task: asyncio.Task | None) -> None:
        if task is not None and not task.done():
            task.cancel()
