"""HTTP and push server — aiohttp application serving pull endpoints and the live feed.

Exposes:
- ``GET /``                 → plain-text banner
- ``GET /health``           → store connectivity
- ``GET /access-logs``      → newest access-log entries
- ``GET /export/{table}``   → XLSX export of an allow-listed table
- ``GET /latest``           → last-known reading per event kind
- ``GET/DELETE /alerts``    → in-process alert monitor (list, clear all)
- ``DELETE /alerts/{key}``  → clear one alert
- ``GET /ws``               → WebSocket push feed (primary transport)
- ``POST /poll``, ``GET/DELETE /poll/{sid}`` → long-polling feed (fallback)
"""

from __future__ import annotations

import asyncio
import json
import weakref
from collections.abc import AsyncIterator
from typing import Any

import structlog
from aiohttp import WSCloseCode, WSMsgType, web

from nocwatch.alerts.monitor import AlertMonitor
from nocwatch.core.config import PushConfig, ServerConfig
from nocwatch.core.exceptions import StoreError
from nocwatch.core.types import EXPORTABLE_TABLES, TelemetryEvent, Transport
from nocwatch.sampler.sampler import Sampler
from nocwatch.server.export import XLSX_CONTENT_TYPE, rows_to_xlsx
from nocwatch.store.base import ReadingStore
from nocwatch.subscriptions.hub import Subscription, SubscriptionHub

logger = structlog.stdlib.get_logger()

STORE_KEY = web.AppKey("store", ReadingStore)
HUB_KEY = web.AppKey("hub", SubscriptionHub)
SAMPLER_KEY = web.AppKey("sampler", Sampler)
MONITOR_KEY = web.AppKey("monitor", AlertMonitor)
SERVER_CONFIG_KEY = web.AppKey("server_config", ServerConfig)
PUSH_CONFIG_KEY = web.AppKey("push_config", PushConfig)
SOCKETS_KEY = web.AppKey("sockets", weakref.WeakSet)

BANNER = "NOC Monitoring Backend is running"

_CORS_METHODS = "GET, POST, DELETE, OPTIONS"
_CORS_HEADERS = "Content-Type, Authorization"


def _origin_allowed(origin: str, allowed: str) -> bool:
    return allowed == "*" or origin == allowed


def _cors_headers(origin: str) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": _CORS_METHODS,
        "Access-Control-Allow-Headers": _CORS_HEADERS,
        "Vary": "Origin",
    }


@web.middleware
async def _cors_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Apply the single allowed origin to preflights, responses and upgrades."""
    allowed = request.app[SERVER_CONFIG_KEY].allowed_origin
    origin = request.headers.get("Origin")
    if origin is None:
        return await handler(request)

    ok = _origin_allowed(origin, allowed)
    if request.method == "OPTIONS":
        if not ok:
            return web.Response(status=403, text="Origin not allowed")
        return web.Response(status=204, headers=_cors_headers(origin))
    if not ok and request.path == "/ws":
        return web.Response(status=403, text="Origin not allowed")

    resp = await handler(request)
    if ok and not resp.prepared:
        resp.headers.update(_cors_headers(origin))
    return resp


# ── Pull endpoints ──────────────────────────────────────────────


async def _handle_index(request: web.Request) -> web.Response:
    return web.Response(text=BANNER)


async def _handle_health(request: web.Request) -> web.Response:
    connected = await request.app[STORE_KEY].ping()
    return web.json_response({
        "status": "ok",
        "database": "connected" if connected else "disconnected",
    })


async def _handle_access_logs(request: web.Request) -> web.Response:
    try:
        entries = await request.app[SAMPLER_KEY].fetch_access_logs()
    except StoreError as exc:
        logger.warning("access_logs_fetch_failed", error=str(exc))
        return web.json_response({"error": "Failed to fetch access logs"}, status=500)
    return web.json_response(entries)


async def _handle_export(request: web.Request) -> web.Response:
    table = request.match_info["table"]
    if table not in EXPORTABLE_TABLES:
        raise web.HTTPNotFound(text=f"Unknown table: {table}")

    limit = request.app[SERVER_CONFIG_KEY].export_max_rows
    try:
        rows = await request.app[STORE_KEY].export_rows(table, limit=limit)
    except StoreError as exc:
        logger.warning("export_failed", table=table, error=str(exc))
        return web.json_response({"error": f"Failed to export {table}"}, status=500)

    body = await asyncio.to_thread(rows_to_xlsx, table, rows)
    return web.Response(
        body=body,
        content_type=XLSX_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{table}.xlsx"'},
    )


async def _handle_latest(request: web.Request) -> web.Response:
    latest = request.app[SAMPLER_KEY].latest()
    return web.json_response({kind.value: event.to_wire() for kind, event in latest.items()})


# ── Operator alert endpoints ────────────────────────────────────


def _monitor(request: web.Request) -> AlertMonitor:
    monitor = request.app.get(MONITOR_KEY)
    if monitor is None:
        raise web.HTTPNotFound(text="Alert monitor disabled")
    return monitor


async def _handle_alerts(request: web.Request) -> web.Response:
    engine = _monitor(request).engine
    return web.json_response([
        {
            "key": a.key,
            "message": a.message,
            "severity": a.severity.name,
            "raised_at": a.raised_at,
        }
        for a in engine.active()
    ])


async def _handle_clear_alert(request: web.Request) -> web.Response:
    cleared = await _monitor(request).engine.clear(request.match_info["key"])
    return web.json_response({"cleared": 1 if cleared else 0})


async def _handle_clear_alerts(request: web.Request) -> web.Response:
    cleared = await _monitor(request).engine.clear_all()
    return web.json_response({"cleared": cleared})


# ── Push: WebSocket ─────────────────────────────────────────────


def _frame(event: TelemetryEvent) -> str:
    return json.dumps(event.to_wire())


async def _pump_websocket(ws: web.WebSocketResponse, sub: Subscription) -> None:
    """Forward queued events to one socket. A failed send ends this observer only."""
    try:
        async for event in sub.events():
            await ws.send_str(_frame(event))
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("observer_send_failed", sid=sub.id, error=str(exc))
    # The subscription is gone either way; the socket has nothing left to carry.
    await ws.close()


async def _handle_ws(request: web.Request) -> web.WebSocketResponse:
    push = request.app[PUSH_CONFIG_KEY]
    hub = request.app[HUB_KEY]
    ws = web.WebSocketResponse(
        heartbeat=push.ping_interval_secs,
        max_msg_size=push.max_message_bytes,
    )
    await ws.prepare(request)
    request.app[SOCKETS_KEY].add(ws)

    sub = hub.connect(Transport.PRIMARY)
    await ws.send_json({"event": "hello", "sid": sub.id})
    sender = asyncio.create_task(_pump_websocket(ws, sub))
    reason = "client_closed"
    try:
        async for msg in ws:
            sub.touch()
            if msg.type == WSMsgType.ERROR:
                reason = f"error: {ws.exception()}"
                break
    finally:
        request.app[SOCKETS_KEY].discard(ws)
        hub.disconnect(sub.id, reason=reason)
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
    return ws


async def _close_websockets(app: web.Application) -> None:
    """Close open feeds on shutdown so their handlers can return."""
    for ws in set(app[SOCKETS_KEY]):
        await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


# ── Push: long-polling ──────────────────────────────────────────


def _poll_subscription(request: web.Request) -> Subscription:
    sub = request.app[HUB_KEY].get(request.match_info["sid"])
    if sub is None or sub.transport is not Transport.FALLBACK:
        raise web.HTTPNotFound(text="Unknown session")
    return sub


async def _handle_poll_open(request: web.Request) -> web.Response:
    sub = request.app[HUB_KEY].connect(Transport.FALLBACK)
    return web.json_response({"sid": sub.id})


async def _handle_poll(request: web.Request) -> web.Response:
    sub = _poll_subscription(request)
    sub.touch()
    events = await sub.next_batch(timeout=request.app[PUSH_CONFIG_KEY].poll_timeout_secs)
    if sub.closed:
        raise web.HTTPNotFound(text="Session closed")
    sub.touch()
    return web.json_response([e.to_wire() for e in events])


async def _handle_poll_close(request: web.Request) -> web.Response:
    sub = _poll_subscription(request)
    request.app[HUB_KEY].disconnect(sub.id, reason="client_closed")
    return web.json_response({"closed": True})


async def _reap_idle_polls(app: web.Application) -> AsyncIterator[None]:
    """Background cleanup of polling sessions whose observer went away."""
    push = app[PUSH_CONFIG_KEY]
    hub = app[HUB_KEY]

    async def _loop() -> None:
        while True:
            await asyncio.sleep(push.reap_interval_secs)
            reaped = hub.reap_idle(push.ping_timeout_secs, transport=Transport.FALLBACK)
            if reaped:
                logger.info("poll_sessions_reaped", count=len(reaped))

    task = asyncio.create_task(_loop())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    hub.close_all()


def create_web_app(
    store: ReadingStore,
    hub: SubscriptionHub,
    sampler: Sampler,
    server_config: ServerConfig | None = None,
    push_config: PushConfig | None = None,
    monitor: AlertMonitor | None = None,
) -> web.Application:
    """Create the aiohttp web application."""
    app = web.Application(middlewares=[_cors_middleware])
    app[STORE_KEY] = store
    app[HUB_KEY] = hub
    app[SAMPLER_KEY] = sampler
    app[SERVER_CONFIG_KEY] = server_config or ServerConfig()
    app[PUSH_CONFIG_KEY] = push_config or PushConfig()
    app[SOCKETS_KEY] = weakref.WeakSet()
    if monitor is not None:
        app[MONITOR_KEY] = monitor

    app.router.add_get("/", _handle_index)
    app.router.add_get("/health", _handle_health)
    app.router.add_get("/access-logs", _handle_access_logs)
    app.router.add_get("/export/{table}", _handle_export)
    app.router.add_get("/latest", _handle_latest)
    app.router.add_get("/alerts", _handle_alerts)
    app.router.add_delete("/alerts", _handle_clear_alerts)
    app.router.add_delete("/alerts/{key}", _handle_clear_alert)
    app.router.add_get("/ws", _handle_ws)
    app.router.add_post("/poll", _handle_poll_open)
    app.router.add_get("/poll/{sid}", _handle_poll)
    app.router.add_delete("/poll/{sid}", _handle_poll_close)
    app.on_shutdown.append(_close_websockets)
    app.cleanup_ctx.append(_reap_idle_polls)
    return app


async def start_web_server(
    app: web.Application,
    host: str = "0.0.0.0",
    port: int = 3000,
) -> web.AppRunner:
    """Start serving *app*. Returns the runner for cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("server_listening", host=host, port=port)
    return runner
