"""ThresholdEngine — turns telemetry events into deduplicated alerts."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping

import structlog

from nocwatch.alerts.book import AlertBook
from nocwatch.alerts.sinks import AlertSink, CompositeSink
from nocwatch.alerts.thresholds import (
    Breach,
    binary_keys,
    classify_binary,
    classify_range,
    range_keys,
)
from nocwatch.core.config import ThresholdConfig
from nocwatch.core.types import (
    CONNECTIVITY_KEY,
    AlertRecord,
    Severity,
    TelemetryEvent,
    TelemetryKind,
)

logger = structlog.stdlib.get_logger()

CONNECTIVITY_MESSAGE = "Connection to server lost. Reconnecting..."

# (metric name, payload field) pairs evaluated per event kind.
_RANGE_FIELDS: dict[TelemetryKind, tuple[tuple[str, str], ...]] = {
    TelemetryKind.NOC_TEMPERATURE: (("noc_temperature", "suhu"),),
    TelemetryKind.UPS_TEMPERATURE: (("ups_temperature", "suhu"),),
    TelemetryKind.NOC_HUMIDITY: (("noc_humidity", "kelembapan"),),
    TelemetryKind.UPS_HUMIDITY: (("ups_humidity", "kelembapan"),),
    TelemetryKind.ELECTRICAL: (
        ("phase_r", "phase_r"),
        ("phase_s", "phase_s"),
        ("phase_t", "phase_t"),
    ),
}

_BINARY_FIELDS: dict[TelemetryKind, tuple[tuple[str, str], ...]] = {
    TelemetryKind.FIRE_SMOKE: (("fire", "api_value"), ("smoke", "asap_value")),
}


def _reading(payload: object, field: str) -> float | None:
    if not isinstance(payload, Mapping):
        return None
    raw = payload.get(field)
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


class ThresholdEngine:
    """Evaluates readings against thresholds and owns one observer's alerts.

    One instance per observer; it is only ever driven by that observer's
    delivery task, so it holds no locks.

    Usage::

        engine = ThresholdEngine(settings.thresholds, sink=LogSink())
        await engine.on_event(event)
        engine.active()        # current alerts
        await engine.clear_all()
    """

    def __init__(
        self,
        config: ThresholdConfig | None = None,
        sink: AlertSink | None = None,
        book: AlertBook | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or ThresholdConfig()
        self._sink: AlertSink = sink or CompositeSink()
        self._book = book or AlertBook()
        self._clock = clock
        self._notified = 0

    # ── Properties ────────────────────────────────────────────────

    @property
    def config(self) -> ThresholdConfig:
        return self._config

    @property
    def notified(self) -> int:
        """Number of sink notifications (first raises) so far."""
        return self._notified

    def active(self) -> list[AlertRecord]:
        return self._book.active()

    def is_active(self, key: str) -> bool:
        return key in self._book

    # ── Evaluation (pure) ────────────────────────────────────────

    def evaluate(self, event: TelemetryEvent) -> tuple[list[Breach], list[str]]:
        """Classify every metric carried by *event*.

        Returns the breaches and the metric names that read healthy.
        """
        breaches: list[Breach] = []
        healthy: list[str] = []

        for metric, field in _RANGE_FIELDS.get(event.kind, ()):
            bounds = self._config.ranges.get(metric)
            value = _reading(event.payload, field)
            if bounds is None or value is None:
                continue
            breach = classify_range(metric, value, bounds)
            if breach is None:
                healthy.append(metric)
            else:
                breaches.append(breach)

        for metric, field in _BINARY_FIELDS.get(event.kind, ()):
            spec = self._config.binary.get(metric)
            value = _reading(event.payload, field)
            if spec is None or value is None:
                continue
            breach = classify_binary(metric, value, spec)
            if breach is None:
                healthy.append(metric)
            else:
                breaches.append(breach)

        return breaches, healthy

    # ── Event entry point ────────────────────────────────────────

    async def on_event(self, event: TelemetryEvent) -> list[AlertRecord]:
        """Apply *event*; returns the alerts raised for the first time."""
        breaches, healthy = self.evaluate(event)
        raised: list[AlertRecord] = []
        for breach in breaches:
            record = await self.raise_alert(breach.key, breach.message, breach.severity)
            if record is not None:
                raised.append(record)

        if self._config.auto_clear_on_recovery:
            for metric in healthy:
                keys = binary_keys(metric) if metric in self._config.binary else range_keys(metric)
                for key in keys:
                    await self.clear(key)
        return raised

    # ── Alert lifecycle ──────────────────────────────────────────

    async def raise_alert(
        self,
        key: str,
        message: str,
        severity: Severity,
    ) -> AlertRecord | None:
        """Raise or refresh *key*. Returns the record only on first raise."""
        record, is_new = self._book.raise_alert(key, message, severity, now=self._clock())
        if not is_new:
            return None
        self._notified += 1
        logger.info("alert_raised", key=key, severity=severity.name)
        await self._sink.notify(record)
        return record

    async def raise_connectivity_notice(self, detail: str = "") -> AlertRecord | None:
        message = CONNECTIVITY_MESSAGE if not detail else f"{CONNECTIVITY_MESSAGE} ({detail})"
        return await self.raise_alert(CONNECTIVITY_KEY, message, Severity.WARNING)

    async def clear(self, key: str) -> bool:
        """Operator acknowledgement of one alert. Inactive keys are a no-op."""
        if self._book.clear(key) is None:
            return False
        await self._sink.retract(key)
        return True

    async def clear_all(self) -> int:
        cleared = self._book.clear_all()
        for record in cleared:
            await self._sink.retract(record.key)
        return len(cleared)
