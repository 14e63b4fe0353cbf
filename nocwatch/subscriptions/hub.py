"""Subscription hub — fans published events out to connected observers.

Each subscription owns a bounded outbound queue. ``publish`` only appends
to those queues, so it never waits on an observer; a stalled observer
loses its oldest undelivered events instead of holding up the rest.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from collections.abc import AsyncIterator, Iterable

import structlog

from nocwatch.core.types import TelemetryEvent, TelemetryKind, Transport

logger = structlog.stdlib.get_logger()


class Subscription:
    """One connected observer as seen by the hub."""

    def __init__(self, transport: Transport, queue_size: int = 64) -> None:
        self.id = uuid.uuid4().hex
        self.transport = transport
        self.connected_at = time.time()
        self.last_seen_at = self.connected_at
        self._queue: deque[TelemetryEvent] = deque(maxlen=queue_size)
        self._wakeup = asyncio.Event()
        self._closed = False
        self.delivered = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._queue)

    def touch(self) -> None:
        self.last_seen_at = time.time()

    def offer(self, event: TelemetryEvent) -> None:
        """Enqueue without blocking. Drops the oldest event when full."""
        if self._closed:
            return
        if len(self._queue) == self._queue.maxlen:
            self.dropped += 1
        self._queue.append(event)
        self._wakeup.set()

    def drain(self) -> list[TelemetryEvent]:
        """Take everything queued right now."""
        events = list(self._queue)
        self._queue.clear()
        self._wakeup.clear()
        self.delivered += len(events)
        return events

    async def next_batch(self, timeout: float | None = None) -> list[TelemetryEvent]:
        """Wait until at least one event is queued (or timeout/close), then drain."""
        if not self._queue and not self._closed:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except TimeoutError:
                return []
        return self.drain()

    async def events(self, *kinds: TelemetryKind) -> AsyncIterator[TelemetryEvent]:
        """Lazy event stream, optionally filtered to *kinds*.

        Each call starts a fresh iteration over whatever is queued from
        then on. The stream ends when the subscription is closed.
        """
        wanted = frozenset(kinds)
        while not self._closed:
            for event in await self.next_batch():
                if not wanted or event.kind in wanted:
                    yield event

    def close(self) -> None:
        self._closed = True
        self._queue.clear()
        self._wakeup.set()


class SubscriptionHub:
    """Registry of live subscriptions and the publish fan-out."""

    def __init__(self, queue_size: int = 64) -> None:
        self._queue_size = queue_size
        self._subs: dict[str, Subscription] = {}
        self._published = 0

    @property
    def published(self) -> int:
        return self._published

    def __len__(self) -> int:
        return len(self._subs)

    def __contains__(self, sub_id: object) -> bool:
        return sub_id in self._subs

    def get(self, sub_id: str) -> Subscription | None:
        return self._subs.get(sub_id)

    def subscriptions(self) -> list[Subscription]:
        return list(self._subs.values())

    def connect(self, transport: Transport) -> Subscription:
        sub = Subscription(transport, queue_size=self._queue_size)
        self._subs[sub.id] = sub
        logger.info(
            "observer_connected",
            sid=sub.id,
            transport=transport,
            observers=len(self._subs),
        )
        return sub

    def disconnect(self, sub_id: str, reason: str = "") -> bool:
        """Terminal teardown. Unknown ids are ignored."""
        sub = self._subs.pop(sub_id, None)
        if sub is None:
            return False
        sub.close()
        logger.info(
            "observer_disconnected",
            sid=sub_id,
            reason=reason,
            dropped=sub.dropped,
            observers=len(self._subs),
        )
        return True

    def publish(self, event: TelemetryEvent) -> int:
        """Offer *event* to every live subscription. Returns the fan-out count."""
        self._published += 1
        subs = list(self._subs.values())
        for sub in subs:
            sub.offer(event)
        return len(subs)

    def reap_idle(
        self,
        idle_timeout: float,
        transport: Transport | None = None,
        now: float | None = None,
    ) -> list[str]:
        """Disconnect subscriptions not seen for *idle_timeout* seconds.

        Restricted to one transport when *transport* is given.
        """
        now = time.time() if now is None else now
        stale = [
            sid for sid, sub in self._subs.items()
            if (transport is None or sub.transport is transport)
            and now - sub.last_seen_at > idle_timeout
        ]
        for sid in stale:
            self.disconnect(sid, reason="idle_timeout")
        return stale

    def close_all(self, sub_ids: Iterable[str] | None = None) -> None:
        for sid in list(sub_ids if sub_ids is not None else self._subs):
            self.disconnect(sid, reason="shutdown")
