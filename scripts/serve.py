#!/usr/bin/env python3
"""Server entrypoint — wires the store, sampler, hub, alert monitor and web app.

Usage::

    # Run with default config
    python scripts/serve.py

    # Custom config file
    python scripts/serve.py --config config/settings.yaml

    # Override log level
    python scripts/serve.py --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from nocwatch.alerts.engine import ThresholdEngine
from nocwatch.alerts.monitor import AlertMonitor
from nocwatch.alerts.sinks import create_alert_sink
from nocwatch.core.config import load_settings
from nocwatch.core.logging import setup_logging
from nocwatch.sampler.sampler import Sampler
from nocwatch.server.app import create_web_app, start_web_server
from nocwatch.store.sql import SqlReadingStore
from nocwatch.subscriptions.hub import SubscriptionHub

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start all components and serve until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    logger.info(
        "server_starting",
        port=settings.server.port,
        allowed_origin=settings.server.allowed_origin,
        interval_secs=settings.sampler.interval_secs,
        alert_monitor=settings.alerts.monitor_enabled,
    )

    # ── Store ────────────────────────────────────────────────────
    store = SqlReadingStore.from_config(settings.database)
    if await store.ping():
        logger.info("store_connected")
    else:
        # Keep serving: the sampler retries every tick and /health reports it.
        logger.error("store_unreachable_at_startup")

    # ── Hub + sampler ────────────────────────────────────────────
    hub = SubscriptionHub(queue_size=settings.push.queue_size)
    sampler = Sampler(store, settings.sampler)
    sampler.on_event(hub.publish)

    # ── In-process alert monitor ─────────────────────────────────
    sink = create_alert_sink(
        log_enabled=settings.alerts.log_enabled,
        webhook=settings.alerts.webhook,
    )
    monitor: AlertMonitor | None = None
    if settings.alerts.monitor_enabled:
        monitor = AlertMonitor(hub, ThresholdEngine(settings.thresholds, sink=sink))

    # ── Web app ──────────────────────────────────────────────────
    app = create_web_app(
        store,
        hub,
        sampler,
        server_config=settings.server,
        push_config=settings.push,
        monitor=monitor,
    )
    runner = await start_web_server(app, settings.server.host, settings.server.port)

    if monitor is not None:
        await monitor.start()
    await sampler.start()

    logger.info("server_running", observers=len(hub))

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("server_shutting_down")

    await sampler.stop()
    if monitor is not None:
        await monitor.stop()
    await runner.cleanup()
    await sink.close()
    await store.close()

    logger.info(
        "server_stopped",
        ticks=sampler.tick_count,
        published=hub.published,
        table_errors=sampler.table_errors,
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="NOC telemetry server")
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    parser.add_argument("--log-level", default=None, help="Log level override")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
