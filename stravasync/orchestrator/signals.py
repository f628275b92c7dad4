"""Inbound host signals, delivered to the orchestrator as queued messages.

The host posts signals whenever it notices something relevant:

    VisibilityResumed - the user came back to the application
    StorageChanged    - another context changed a local store key

``SignalChannel`` decouples the host's event mechanism from the orchestrator:
the host only calls ``post()``; a single consumer task drains the queue and
hands each signal to the handler.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

logger = logging.getLogger("stravasync.orchestrator.signals")


@dataclass(frozen=True)
class VisibilityResumed:
    pass


@dataclass(frozen=True)
class StorageChanged:
    key: str
    new_value: str | None


Signal = Union[VisibilityResumed, StorageChanged]
SignalHandler = Callable[[Signal], Awaitable[None]]


class SignalChannel:
    """Single-consumer queue of host signals."""

    def __init__(self, handler: SignalHandler) -> None:
        self._handler = handler
        self._queue: asyncio.Queue[Signal] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._consume(), name="signals")
        logger.debug("Signal listener started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Signal listener stopped")

    def post(self, signal: Signal) -> None:
        self._queue.put_nowait(signal)

    async def join(self) -> None:
        """Wait until every posted signal has been handled."""
        await self._queue.join()

    async def _consume(self) -> None:
        while True:
            signal = await self._queue.get()
            try:
                await self._handler(signal)
            except Exception:
                logger.exception("Handling %r failed", signal)
            finally:
                self._queue.task_done()
