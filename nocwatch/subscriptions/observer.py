"""ObserverClient — keeps one observer's push feed alive across network failures.

Runs the link state machine from ``nocwatch.subscriptions.state``:
reconnects forever with capped exponential backoff, falls back from
WebSocket to long-polling on transport errors or repeated handshake
failures, and raises a connectivity notice whenever the link drops.
Events published while the link is down are not replayed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from nocwatch.core.config import ObserverConfig, PushConfig
from nocwatch.core.exceptions import HandshakeError, LinkLostError, TransportError
from nocwatch.core.types import TelemetryEvent, Transport
from nocwatch.subscriptions.state import LinkState, LinkStatus, LinkTrigger, transition
from nocwatch.subscriptions.transports import PushSession, open_session

if TYPE_CHECKING:
    from nocwatch.alerts.engine import ThresholdEngine

logger = structlog.stdlib.get_logger()

SessionFactory = Callable[[Transport], PushSession]
EventCallback = Callable[[TelemetryEvent], Awaitable[None] | None]


class ObserverClient:
    """Connects to a server's push channel and drives a local ThresholdEngine.

    Usage::

        client = ObserverClient(settings.observer, engine)
        client.on_event(render)
        await client.start()
        ...
        await client.stop()   # cancels any pending backoff timer
    """

    def __init__(
        self,
        config: ObserverConfig,
        engine: ThresholdEngine,
        push: PushConfig | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self._config = config
        self._engine = engine
        self._push = push or PushConfig()
        self._factory: SessionFactory = session_factory or (
            lambda transport: open_session(transport, self._config, self._push)
        )
        self._state = LinkState(max_failures=config.max_handshake_failures)
        self._callbacks: list[EventCallback] = []
        self._session: PushSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._reconnect_delay = config.reconnect_base_secs
        self._fast_resume = True
        self._received = 0
        self._connects = 0

    # ── Properties ────────────────────────────────────────────────

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def engine(self) -> ThresholdEngine:
        return self._engine

    @property
    def received(self) -> int:
        return self._received

    @property
    def connects(self) -> int:
        """Successful handshakes so far."""
        return self._connects

    def on_event(self, callback: EventCallback) -> None:
        self._callbacks.append(callback)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._task is not None or self._state.status is LinkStatus.TERMINATED:
            return
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        """Explicit teardown: the only way into TERMINATED."""
        self._apply(LinkTrigger.TEARDOWN)
        if self._session is not None:
            await self._session.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    # ── State machine plumbing ───────────────────────────────────

    def _apply(self, trigger: LinkTrigger) -> LinkState:
        before = self._state
        self._state = transition(before, trigger)
        if self._state != before:
            logger.info(
                "link_transition",
                trigger=trigger,
                status=self._state.status,
                previous=before.status,
                transport=self._state.transport,
                failures=self._state.failures,
            )
        return self._state

    async def _run_loop(self) -> None:
        while self._state.status is not LinkStatus.TERMINATED:
            try:
                await self._attempt()
            except Exception:
                logger.exception("observer_attempt_error", transport=self._state.transport)
                if self._state.status is LinkStatus.CONNECTED:
                    self._apply(LinkTrigger.LINK_LOST)
                else:
                    self._apply(LinkTrigger.HANDSHAKE_FAILED)

            if self._state.status is LinkStatus.DEGRADED:
                await self._engine.raise_connectivity_notice()
                if self._fast_resume:
                    # One immediate resume per outage. A link that keeps
                    # dropping before it proves healthy backs off instead.
                    self._fast_resume = False
                    continue
                await self._backoff()

            elif self._state.status is LinkStatus.DISCONNECTED:
                await self._engine.raise_connectivity_notice()
                await self._backoff()
                self._apply(LinkTrigger.RETRY)

    async def _backoff(self) -> None:
        logger.warning(
            "observer_reconnecting",
            delay=self._reconnect_delay,
            status=self._state.status,
            transport=self._state.transport,
        )
        await asyncio.sleep(self._reconnect_delay)
        self._reconnect_delay = min(
            self._reconnect_delay * 2, self._config.reconnect_cap_secs
        )

    async def _attempt(self) -> None:
        """One handshake plus, if it succeeds, the receive loop."""
        session = self._factory(self._state.transport)
        self._session = session
        try:
            try:
                await session.open()
            except TransportError as exc:
                logger.warning("observer_transport_error", error=str(exc))
                self._apply(LinkTrigger.TRANSPORT_ERROR)
                return
            except HandshakeError as exc:
                logger.warning("observer_handshake_failed", error=str(exc))
                self._apply(LinkTrigger.HANDSHAKE_FAILED)
                return

            self._apply(LinkTrigger.HANDSHAKE_OK)
            self._connects += 1
            await self._receive(session)
        finally:
            self._session = None
            await session.close()

    async def _receive(self, session: PushSession) -> None:
        loop = asyncio.get_running_loop()
        opened_at = loop.time()
        delivered = 0
        try:
            async for event in session.frames():
                delivered += 1
                await self._deliver(event)
            if self._state.status is not LinkStatus.TERMINATED:
                self._apply(LinkTrigger.LINK_LOST)
        except TransportError as exc:
            logger.warning("observer_transport_error", error=str(exc))
            self._apply(LinkTrigger.TRANSPORT_ERROR)
        except LinkLostError as exc:
            logger.warning("observer_link_lost", error=str(exc))
            self._apply(LinkTrigger.LINK_LOST)
        finally:
            # Only a link that carried data, or outlived the longest backoff,
            # ends the outage.
            if delivered or loop.time() - opened_at >= self._config.reconnect_cap_secs:
                self._reconnect_delay = self._config.reconnect_base_secs
                self._fast_resume = True

    async def _deliver(self, event: TelemetryEvent) -> None:
        self._received += 1
        try:
            await self._engine.on_event(event)
        except Exception:
            logger.exception("observer_engine_error", kind=event.kind)
        for cb in self._callbacks:
            try:
                result = cb(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("observer_callback_error", kind=event.kind)
