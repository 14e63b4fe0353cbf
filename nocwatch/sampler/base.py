"""Abstract periodic poller — tick loop, event callbacks, lifecycle management."""

from __future__ import annotations

import abc
import asyncio
import time
from collections.abc import Awaitable, Callable
from types import TracebackType

import structlog

from nocwatch.core.types import TelemetryEvent

logger = structlog.stdlib.get_logger()

# Type alias for telemetry event callbacks
TelemetryCallback = Callable[[TelemetryEvent], Awaitable[None] | None]


class BasePoller(abc.ABC):
    """Abstract base class for fixed-cadence pollers.

    Subclasses implement ``tick()`` and call ``_emit()`` for each event they
    produce; the base class owns the background loop and the callbacks.

    Usage::

        poller = MyPoller(interval_secs=5.0)
        poller.on_event(hub.publish)
        async with poller:
            await asyncio.sleep(60)
    """

    def __init__(self, name: str, interval_secs: float = 5.0) -> None:
        self._name = name
        self._interval_secs = interval_secs
        self._callbacks: list[TelemetryCallback] = []
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._tick_count = 0
        self._error_count = 0
        self._last_tick_time: float = 0.0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def last_tick_time(self) -> float:
        return self._last_tick_time

    def on_event(self, callback: TelemetryCallback) -> None:
        """Register a callback for produced events."""
        self._callbacks.append(callback)

    async def _emit(self, event: TelemetryEvent) -> None:
        """Dispatch one event to all registered callbacks."""
        for cb in self._callbacks:
            try:
                result = cb(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "poller_callback_error",
                    poller=self._name,
                    kind=event.kind,
                )

    @abc.abstractmethod
    async def tick(self) -> None:
        """Run one sampling cycle."""

    async def start(self) -> None:
        """Start the background tick loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._tick_loop())
        logger.info("poller_started", poller=self._name, interval_secs=self._interval_secs)

    async def stop(self) -> None:
        """Stop the tick loop."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("poller_stopped", poller=self._name, ticks=self._tick_count)

    async def _tick_loop(self) -> None:
        """Call tick() every interval. A failed tick never ends the loop."""
        loop = asyncio.get_running_loop()
        while self._running:
            started = loop.time()
            try:
                await self.tick()
                self._tick_count += 1
                self._last_tick_time = time.time()
            except asyncio.CancelledError:
                break
            except Exception:
                self._error_count += 1
                logger.exception(
                    "poller_tick_error",
                    poller=self._name,
                    error_count=self._error_count,
                )

            delay = max(0.0, self._interval_secs - (loop.time() - started))
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                break

    async def __aenter__(self) -> BasePoller:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
