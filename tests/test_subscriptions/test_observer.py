"""Tests for ObserverClient — reconnect, fallback, teardown, local alerting."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest
from aiohttp import test_utils, web

from nocwatch.alerts.engine import ThresholdEngine
from nocwatch.core.config import ObserverConfig
from nocwatch.core.exceptions import HandshakeError, LinkLostError, TransportError
from nocwatch.core.types import CONNECTIVITY_KEY, TelemetryEvent, TelemetryKind, Transport
from nocwatch.subscriptions import observer
from nocwatch.subscriptions.observer import ObserverClient
from nocwatch.subscriptions.state import LinkStatus
from nocwatch.subscriptions.transports import PollingSession, PushSession

_real_sleep = asyncio.sleep


# ── Helpers ─────────────────────────────────────────────────────


def _event(seq: int, kind: TelemetryKind = TelemetryKind.NOC_TEMPERATURE, **payload: object) -> TelemetryEvent:
    return TelemetryEvent(kind=kind, payload=payload or {"suhu": 21.0, "seq": seq})


class ScriptedSession(PushSession):
    """PushSession that plays back a fixed script.

    With ``end`` unset, ``frames()`` holds after the scripted events until
    the session is closed.
    """

    def __init__(
        self,
        transport: Transport,
        open_error: Exception | None = None,
        events: list[TelemetryEvent] | None = None,
        end: Exception | None = None,
    ) -> None:
        self.transport = transport
        self._open_error = open_error
        self._events = events or []
        self._end = end
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def open(self) -> None:
        if self._open_error is not None:
            raise self._open_error

    async def frames(self) -> AsyncIterator[TelemetryEvent]:
        for ev in self._events:
            yield ev
        if self._end is not None:
            raise self._end
        await self._closed.wait()

    async def close(self) -> None:
        self._closed.set()


class ScriptedFactory:
    """Hands out one scripted session per connection attempt."""

    def __init__(self, *plans: dict) -> None:
        self._plans = list(plans)
        self.transports: list[Transport] = []
        self.sessions: list[ScriptedSession] = []

    def __call__(self, transport: Transport) -> ScriptedSession:
        self.transports.append(transport)
        plan = self._plans.pop(0) if self._plans else {}
        session = ScriptedSession(transport, **plan)
        self.sessions.append(session)
        return session


def _config(**kw: object) -> ObserverConfig:
    defaults: dict[str, object] = {
        "server_url": "http://noc.invalid",
        "reconnect_base_secs": 0.01,
        "reconnect_cap_secs": 0.02,
    }
    defaults.update(kw)
    return ObserverConfig(**defaults)  # type: ignore[arg-type]


def _client(factory: ScriptedFactory, engine: ThresholdEngine | None = None, **kw: object) -> ObserverClient:
    return ObserverClient(_config(**kw), engine or ThresholdEngine(), session_factory=factory)


class SleepRecorder:
    """Stands in for asyncio.sleep in the observer module; records each delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await _real_sleep(0)


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> SleepRecorder:
    recorder = SleepRecorder()
    monkeypatch.setattr(observer.asyncio, "sleep", recorder)
    return recorder


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met")
        await _real_sleep(0.005)


# ── Delivery ────────────────────────────────────────────────────


class TestDelivery:
    async def test_events_reach_callbacks_and_engine(self) -> None:
        fire = _event(1, TelemetryKind.FIRE_SMOKE, api_value=0, asap_value=1)
        factory = ScriptedFactory({"events": [fire]})
        client = _client(factory)
        received: list[TelemetryEvent] = []
        client.on_event(received.append)

        await client.start()
        await _wait_for(lambda: client.received == 1)
        assert received == [fire]
        assert client.engine.is_active("fire:detected")
        assert client.state.status is LinkStatus.CONNECTED
        await client.stop()

    async def test_callback_error_isolated(self) -> None:
        factory = ScriptedFactory({"events": [_event(1), _event(2)]})
        client = _client(factory)
        received: list[TelemetryEvent] = []

        def bad(event: TelemetryEvent) -> None:
            raise RuntimeError("boom")

        client.on_event(bad)
        client.on_event(received.append)
        await client.start()
        await _wait_for(lambda: len(received) == 2)
        await client.stop()


# ── Reconnection ────────────────────────────────────────────────


class TestReconnect:
    async def test_resumes_after_link_loss_without_replay(self) -> None:
        factory = ScriptedFactory(
            {"events": [_event(1)], "end": LinkLostError("dropped")},
            {"events": [_event(3)]},
        )
        client = _client(factory)
        seen: list[int] = []
        client.on_event(lambda ev: seen.append(ev.payload["seq"]))

        await client.start()
        await _wait_for(lambda: client.received == 2)
        assert seen == [1, 3]
        assert client.connects == 2
        assert factory.transports == [Transport.PRIMARY, Transport.PRIMARY]
        assert client.state.status is LinkStatus.CONNECTED
        await client.stop()

    async def test_connectivity_notice_raised_once(self) -> None:
        factory = ScriptedFactory(
            {"end": LinkLostError("dropped")},
            {"open_error": HandshakeError("refused")},
            {"open_error": HandshakeError("refused")},
        )
        client = _client(factory)
        await client.start()
        await _wait_for(lambda: len(factory.sessions) == 4)
        assert client.engine.is_active(CONNECTIVITY_KEY)
        assert client.engine.notified == 1
        await client.stop()


# ── Fallback ────────────────────────────────────────────────────


class TestFallback:
    async def test_three_handshake_failures_switch_to_polling(self) -> None:
        factory = ScriptedFactory(*({"open_error": HandshakeError("timeout")} for _ in range(3)))
        client = _client(factory)
        await client.start()
        await _wait_for(lambda: client.state.status is LinkStatus.CONNECTED)
        assert factory.transports == [
            Transport.PRIMARY,
            Transport.PRIMARY,
            Transport.PRIMARY,
            Transport.FALLBACK,
        ]
        assert client.state.transport is Transport.FALLBACK
        await client.stop()

    async def test_transport_error_switches_immediately(self) -> None:
        factory = ScriptedFactory({"open_error": TransportError("upgrade refused")})
        client = _client(factory)
        await client.start()
        await _wait_for(lambda: client.state.status is LinkStatus.CONNECTED)
        assert factory.transports == [Transport.PRIMARY, Transport.FALLBACK]
        await client.stop()

    async def test_fallback_keeps_retrying(self) -> None:
        factory = ScriptedFactory(
            {"open_error": TransportError("upgrade refused")},
            *({"open_error": HandshakeError("timeout")} for _ in range(5)),
        )
        client = _client(factory)
        await client.start()
        await _wait_for(lambda: client.state.status is LinkStatus.CONNECTED)
        assert factory.transports[1:] == [Transport.FALLBACK] * 6
        await client.stop()


# ── Teardown ────────────────────────────────────────────────────


class TestTeardown:
    async def test_stop_while_connected(self) -> None:
        factory = ScriptedFactory()
        client = _client(factory)
        await client.start()
        await _wait_for(lambda: client.state.status is LinkStatus.CONNECTED)
        await client.stop()
        assert client.state.status is LinkStatus.TERMINATED
        assert factory.sessions[0].closed
        assert not client.engine.is_active(CONNECTIVITY_KEY)

    async def test_stop_cancels_backoff(self) -> None:
        factory = ScriptedFactory({"open_error": HandshakeError("refused")})
        client = _client(factory, reconnect_base_secs=30.0, reconnect_cap_secs=30.0)
        await client.start()
        await _wait_for(lambda: client.state.status is LinkStatus.DISCONNECTED)
        await asyncio.wait_for(client.stop(), 1.0)
        assert client.state.status is LinkStatus.TERMINATED
        assert len(factory.sessions) == 1

    async def test_start_after_stop_is_noop(self) -> None:
        factory = ScriptedFactory()
        client = _client(factory)
        await client.start()
        await _wait_for(lambda: len(factory.sessions) == 1)
        await client.stop()
        await client.start()
        await asyncio.sleep(0.02)
        assert len(factory.sessions) == 1
        assert client.state.status is LinkStatus.TERMINATED


# ── Unexpected failures ─────────────────────────────────────────


class TestUnexpectedErrors:
    async def test_error_during_open_counts_as_handshake_failure(self) -> None:
        factory = ScriptedFactory({"open_error": ValueError("garbled body")})
        client = _client(factory)
        await client.start()
        await _wait_for(lambda: client.state.status is LinkStatus.CONNECTED)
        assert len(factory.sessions) == 2
        assert factory.sessions[0].closed
        await client.stop()

    async def test_error_after_open_counts_as_link_loss(self) -> None:
        factory = ScriptedFactory(
            {"events": [_event(1)], "end": RuntimeError("decoder blew up")},
            {"events": [_event(2)]},
        )
        client = _client(factory)
        await client.start()
        await _wait_for(lambda: client.received == 2)
        assert client.connects == 2
        assert client.engine.is_active(CONNECTIVITY_KEY)
        await client.stop()

    async def test_garbled_polling_server_keeps_observer_alive(self) -> None:
        async def _garbled(request: web.Request) -> web.Response:
            return web.Response(text="<html>proxy error</html>", content_type="application/json")

        app = web.Application()
        app.router.add_post("/poll", _garbled)
        srv = test_utils.TestServer(app)
        await srv.start_server()
        attempts: list[Transport] = []

        def factory(transport: Transport) -> PushSession:
            attempts.append(transport)
            return PollingSession(ObserverConfig(server_url=str(srv.make_url("")).rstrip("/")))

        client = ObserverClient(_config(), ThresholdEngine(), session_factory=factory)
        try:
            await client.start()
            await _wait_for(lambda: len(attempts) >= 3)
            assert client.state.status is not LinkStatus.TERMINATED
            assert not client._task.done()
        finally:
            await client.stop()
            await srv.close()


# ── Backoff schedule ────────────────────────────────────────────


class TestBackoff:
    async def test_doubles_to_cap_and_resets_after_healthy_link(self, sleeps: SleepRecorder) -> None:
        factory = ScriptedFactory(
            *({"open_error": HandshakeError("refused")} for _ in range(5)),
            {"events": [_event(1)], "end": LinkLostError("dropped")},
            {"open_error": HandshakeError("refused")},
        )
        client = _client(factory, reconnect_base_secs=1.0, reconnect_cap_secs=5.0)
        await client.start()
        await _wait_for(lambda: len(factory.sessions) == 8)
        await _wait_for(lambda: client.state.status is LinkStatus.CONNECTED)
        # The drop after a healthy link resumes at once; the failure after it
        # starts again from the base delay.
        assert sleeps.delays == [1.0, 2.0, 4.0, 5.0, 5.0, 1.0]
        await client.stop()

    async def test_flapping_link_backs_off(self, sleeps: SleepRecorder) -> None:
        factory = ScriptedFactory(*({"end": LinkLostError("dropped")} for _ in range(5)))
        client = _client(factory, reconnect_base_secs=1.0, reconnect_cap_secs=5.0)
        await client.start()
        await _wait_for(lambda: len(factory.sessions) == 6)
        await _wait_for(lambda: client.state.status is LinkStatus.CONNECTED)
        assert sleeps.delays == [1.0, 2.0, 4.0, 5.0]
        assert client.connects == 6
        await client.stop()
