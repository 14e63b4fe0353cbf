"""Observer-side push sessions: WebSocket (primary) and HTTP long-polling (fallback).

A session is single use: ``open()`` performs the handshake, ``frames()``
yields events until the link ends, ``close()`` releases it. Failures are
reported as:

- ``HandshakeError``: the server could not be reached in time; worth
  retrying on the same transport.
- ``TransportError``: the server answered but refused or garbled this
  transport; the observer should fall back.
- ``LinkLostError``: an open session ended without us asking.
"""

from __future__ import annotations

import abc
import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus

from nocwatch.core.config import ObserverConfig, PushConfig
from nocwatch.core.exceptions import HandshakeError, LinkLostError, TransportError
from nocwatch.core.types import TelemetryEvent, Transport

logger = structlog.stdlib.get_logger()

HELLO_EVENT = "hello"


def _decode_frame(raw: str | bytes | dict[str, Any]) -> TelemetryEvent | None:
    """Parse one push frame. Control frames and junk yield None."""
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("push_invalid_json", raw=str(raw)[:200])
            return None
    if not isinstance(data, dict) or data.get("event") == HELLO_EVENT:
        return None
    try:
        return TelemetryEvent.from_wire(data)
    except (KeyError, ValueError):
        logger.warning("push_unknown_frame", frame=str(data)[:200])
        return None


def websocket_url(server_url: str) -> str:
    """Map an http(s) base URL to the ws(s) push endpoint."""
    base = server_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/ws"


class PushSession(abc.ABC):
    """One connection attempt on one transport."""

    transport: Transport

    @abc.abstractmethod
    async def open(self) -> None:
        """Handshake. Raises HandshakeError or TransportError."""

    @abc.abstractmethod
    def frames(self) -> AsyncIterator[TelemetryEvent]:
        """Yield events until closed. Raises LinkLostError or TransportError."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release the session. Safe to call more than once."""


class WebSocketSession(PushSession):
    """Primary transport over a single WebSocket."""

    transport = Transport.PRIMARY

    def __init__(self, config: ObserverConfig, push: PushConfig | None = None) -> None:
        self._config = config
        self._push = push or PushConfig()
        self._url = websocket_url(config.server_url)
        self._ws: ClientConnection | None = None
        self._closing = False
        self.sid: str | None = None

    async def open(self) -> None:
        timeout = self._config.handshake_timeout_secs
        try:
            self._ws = await connect(
                self._url,
                open_timeout=timeout,
                ping_interval=self._push.ping_interval_secs,
                ping_timeout=self._push.ping_timeout_secs,
                max_size=self._push.max_message_bytes,
            )
        except (InvalidStatus, InvalidHandshake) as exc:
            raise TransportError(f"WebSocket upgrade refused by {self._url}: {exc}") from exc
        except (OSError, TimeoutError) as exc:
            raise HandshakeError(f"Failed to connect to {self._url}: {exc}") from exc

        try:
            raw = await asyncio.wait_for(self._ws.recv(), timeout)
        except TimeoutError as exc:
            await self.close()
            raise HandshakeError("No hello frame before handshake timeout") from exc
        except ConnectionClosed as exc:
            await self.close()
            raise HandshakeError("Closed before hello frame") from exc

        try:
            hello = json.loads(raw)
        except json.JSONDecodeError as exc:
            await self.close()
            raise TransportError("Malformed hello frame") from exc
        if not isinstance(hello, dict) or hello.get("event") != HELLO_EVENT:
            await self.close()
            raise TransportError(f"Unexpected first frame: {str(hello)[:100]}")
        self.sid = hello.get("sid")

    async def frames(self) -> AsyncIterator[TelemetryEvent]:
        if self._ws is None:
            raise LinkLostError("Session not open")
        try:
            async for raw in self._ws:
                event = _decode_frame(raw)
                if event is not None:
                    yield event
        except ConnectionClosed as exc:
            if self._closing:
                return
            raise LinkLostError(f"WebSocket closed: {exc}") from exc
        if not self._closing:
            raise LinkLostError("WebSocket closed by server")

    async def close(self) -> None:
        self._closing = True
        if self._ws is not None:
            ws, self._ws = self._ws, None
            try:
                await ws.close()
            except Exception:
                logger.debug("ws_close_error", exc_info=True)


class PollingSession(PushSession):
    """Fallback transport: repeated long-poll GETs against a server-side session."""

    transport = Transport.FALLBACK

    def __init__(self, config: ObserverConfig, push: PushConfig | None = None) -> None:
        self._config = config
        self._push = push or PushConfig()
        self._base = config.server_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None
        self._closing = False
        self.sid: str | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def open(self) -> None:
        timeout = aiohttp.ClientTimeout(total=self._config.handshake_timeout_secs)
        try:
            session = self._get_session()
            async with session.post(f"{self._base}/poll", timeout=timeout) as resp:
                if resp.status != 200:
                    raise TransportError(f"Polling open refused: HTTP {resp.status}")
                try:
                    body = await resp.json()
                except ValueError as exc:
                    raise TransportError("Polling open returned malformed JSON") from exc
        except TransportError:
            await self.close()
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            await self.close()
            raise HandshakeError(f"Failed to open polling session at {self._base}: {exc}") from exc

        sid = body.get("sid") if isinstance(body, dict) else None
        if not sid:
            await self.close()
            raise TransportError("Polling open returned no session id")
        self.sid = sid

    async def frames(self) -> AsyncIterator[TelemetryEvent]:
        if self.sid is None:
            raise LinkLostError("Session not open")
        # Leave headroom over the server's own wait.
        timeout = aiohttp.ClientTimeout(total=self._push.poll_timeout_secs + 10.0)
        url = f"{self._base}/poll/{self.sid}"
        while not self._closing:
            try:
                session = self._get_session()
                async with session.get(url, timeout=timeout) as resp:
                    if resp.status == 404:
                        raise LinkLostError("Polling session expired")
                    if resp.status != 200:
                        raise TransportError(f"Polling failed: HTTP {resp.status}")
                    try:
                        batch = await resp.json()
                    except ValueError as exc:
                        raise TransportError("Polling response is not JSON") from exc
            except (LinkLostError, TransportError):
                if self._closing:
                    return
                raise
            except (aiohttp.ClientError, TimeoutError) as exc:
                if self._closing:
                    return
                raise LinkLostError(f"Polling request failed: {exc}") from exc

            if not isinstance(batch, list):
                raise TransportError("Polling response is not a list")
            for frame in batch:
                event = _decode_frame(frame)
                if event is not None:
                    yield event

    async def close(self) -> None:
        self._closing = True
        session, self._session = self._session, None
        if session is None or session.closed:
            return
        try:
            if self.sid is not None:
                timeout = aiohttp.ClientTimeout(total=2.0)
                async with session.delete(f"{self._base}/poll/{self.sid}", timeout=timeout):
                    pass
        except (aiohttp.ClientError, TimeoutError):
            logger.debug("poll_close_error", sid=self.sid, exc_info=True)
        finally:
            await session.close()


def open_session(
    transport: Transport,
    config: ObserverConfig,
    push: PushConfig | None = None,
) -> PushSession:
    """Default session factory used by the observer client."""
    if transport is Transport.PRIMARY:
        return WebSocketSession(config, push)
    return PollingSession(config, push)
