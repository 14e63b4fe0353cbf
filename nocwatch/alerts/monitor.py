"""In-process alert monitor — a hub observer that evaluates thresholds server-side."""

from __future__ import annotations

import asyncio

import structlog

from nocwatch.alerts.engine import ThresholdEngine
from nocwatch.core.types import Transport
from nocwatch.subscriptions.hub import Subscription, SubscriptionHub

logger = structlog.stdlib.get_logger()


class AlertMonitor:
    """Subscribes to the hub directly and feeds its own ThresholdEngine.

    Its engine backs the ``/alerts`` endpoints, so operators can list and
    acknowledge alerts without a remote observer.
    """

    def __init__(self, hub: SubscriptionHub, engine: ThresholdEngine) -> None:
        self._hub = hub
        self._engine = engine
        self._sub: Subscription | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def engine(self) -> ThresholdEngine:
        return self._engine

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is not None:
            return
        self._sub = self._hub.connect(Transport.PRIMARY)
        self._task = asyncio.create_task(self._consume(self._sub))

    async def stop(self) -> None:
        if self._sub is not None:
            self._hub.disconnect(self._sub.id, reason="teardown")
            self._sub = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _consume(self, sub: Subscription) -> None:
        async for event in sub.events():
            try:
                await self._engine.on_event(event)
            except Exception:
                logger.exception("alert_monitor_event_error", kind=event.kind)
