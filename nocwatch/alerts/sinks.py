"""Alert sinks — where raised and cleared alerts are delivered."""

from __future__ import annotations

import abc
from datetime import datetime, timezone

import aiohttp
import structlog

from nocwatch.core.config import WebhookConfig
from nocwatch.core.types import AlertRecord, Severity

# Dedicated structured logger for the alert trail.
alert_logger = structlog.get_logger("alert_log")

logger = structlog.get_logger(__name__)

# Embed colours keyed by severity.
_EMBED_COLORS: dict[Severity, int] = {
    Severity.WARNING: 0xF39C12,   # orange
    Severity.CRITICAL: 0xE74C3C,  # red
}
_CLEARED_COLOR = 0x2ECC71


class AlertSink(abc.ABC):
    """Renders alerts for humans.

    ``notify`` is called exactly once per key between clears; it is the
    point where an audible notification belongs.
    """

    @abc.abstractmethod
    async def notify(self, alert: AlertRecord) -> None:
        """Show a newly raised alert and trigger the notification sound."""

    @abc.abstractmethod
    async def retract(self, key: str) -> None:
        """Remove a cleared alert from view."""

    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class LogSink(AlertSink):
    """Writes alerts to the ``alert_log`` logger."""

    async def notify(self, alert: AlertRecord) -> None:
        alert_logger.warning(
            "alert_raised",
            key=alert.key,
            severity=alert.severity.name,
            message=alert.message,
            raised_at=alert.raised_at,
            sound=True,
        )

    async def retract(self, key: str) -> None:
        alert_logger.info("alert_cleared", key=key)


class WebhookSink(AlertSink):
    """Posts alerts to a JSON webhook as colour-coded embeds."""

    def __init__(self, config: WebhookConfig) -> None:
        self._webhook_url = config.webhook_url.get_secret_value()
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _post(self, embed: dict) -> bool:
        try:
            session = self._get_session()
            async with session.post(self._webhook_url, json={"embeds": [embed]}) as resp:
                if resp.status in (200, 204):
                    return True
                body = await resp.text()
                logger.warning("webhook_send_failed", status=resp.status, body=body[:200])
                return False
        except Exception:
            logger.exception("webhook_send_error")
            return False

    async def notify(self, alert: AlertRecord) -> None:
        await self._post({
            "title": f"[{alert.severity.name}] {alert.key}",
            "description": alert.message,
            "color": _EMBED_COLORS.get(alert.severity, 0x95A5A6),
            "timestamp": datetime.fromtimestamp(alert.raised_at, timezone.utc).isoformat(),
        })

    async def retract(self, key: str) -> None:
        await self._post({
            "title": f"[CLEARED] {key}",
            "color": _CLEARED_COLOR,
        })

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


class CompositeSink(AlertSink):
    """Fans alerts out to several sinks; one failing sink never blocks another."""

    def __init__(self, sinks: list[AlertSink] | None = None) -> None:
        self._sinks: list[AlertSink] = sinks or []

    @property
    def sinks(self) -> list[AlertSink]:
        return list(self._sinks)

    async def notify(self, alert: AlertRecord) -> None:
        for sink in self._sinks:
            try:
                await sink.notify(alert)
            except Exception:
                logger.exception("sink_notify_error", sink=type(sink).__name__, key=alert.key)

    async def retract(self, key: str) -> None:
        for sink in self._sinks:
            try:
                await sink.retract(key)
            except Exception:
                logger.exception("sink_retract_error", sink=type(sink).__name__, key=key)

    async def close(self) -> None:
        for sink in self._sinks:
            try:
                await sink.close()
            except Exception:
                logger.exception("sink_close_error", sink=type(sink).__name__)


def create_alert_sink(
    log_enabled: bool = True,
    webhook: WebhookConfig | None = None,
) -> CompositeSink:
    """Build the sink stack from config."""
    sinks: list[AlertSink] = []
    if log_enabled:
        sinks.append(LogSink())
    if webhook is not None and webhook.enabled:
        sinks.append(WebhookSink(webhook))
    return CompositeSink(sinks)
