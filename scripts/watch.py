#!/usr/bin/env python3
"""Remote observer — follows a server's push feed and raises alerts locally.

Usage::

    python scripts/watch.py --server http://10.10.11.27:3000
    python scripts/watch.py --config config/settings.yaml --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from nocwatch.alerts.engine import ThresholdEngine
from nocwatch.alerts.sinks import create_alert_sink
from nocwatch.core.config import load_settings
from nocwatch.core.logging import setup_logging
from nocwatch.core.types import TelemetryEvent
from nocwatch.subscriptions.observer import ObserverClient

logger = structlog.get_logger(__name__)


def _log_reading(event: TelemetryEvent) -> None:
    logger.debug("reading", kind=event.kind, data=event.to_wire()["data"])


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, fmt=args.format)

    observer_config = settings.observer
    if args.server:
        observer_config = observer_config.model_copy(update={"server_url": args.server})

    sink = create_alert_sink(
        log_enabled=settings.alerts.log_enabled,
        webhook=settings.alerts.webhook,
    )
    engine = ThresholdEngine(settings.thresholds, sink=sink)
    client = ObserverClient(observer_config, engine, push=settings.push)
    client.on_event(_log_reading)

    logger.info("observer_starting", server=observer_config.server_url)
    await client.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    await client.stop()
    await sink.close()
    logger.info(
        "observer_stopped",
        received=client.received,
        connects=client.connects,
        active_alerts=len(engine.active()),
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="NOC telemetry observer")
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    parser.add_argument("--server", default=None, help="Server base URL override")
    parser.add_argument("--log-level", default=None, help="Log level override")
    parser.add_argument("--format", default=None, choices=["json", "console"])
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
