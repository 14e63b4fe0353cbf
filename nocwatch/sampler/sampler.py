"""Sensor sampler — reads the newest row per table each tick and publishes events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import structlog

from nocwatch.core.config import SamplerConfig
from nocwatch.core.types import (
    ACCESS_LOG_TABLE,
    ELECTRICAL_TABLE,
    FIRE_SMOKE_TABLE,
    NOC_SENSOR_TABLE,
    UPS_SENSOR_TABLE,
    TelemetryEvent,
    TelemetryKind,
)
from nocwatch.sampler.base import BasePoller
from nocwatch.store.base import ReadingStore, Row

logger = structlog.stdlib.get_logger()

# Fields that are always numeric, even when the driver hands back strings
# (DECIMAL columns often arrive as str).
_NUMERIC_FIELDS = frozenset({
    "suhu",
    "kelembapan",
    "phase_r",
    "phase_s",
    "phase_t",
    "api_value",
    "asap_value",
})

# Identity columns keep their integer form.
_ID_FIELDS = frozenset({"id"})


def _coerce_value(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key in _NUMERIC_FIELDS:
        return float(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, int) and key not in _ID_FIELDS:
        return float(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.isoformat()
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def normalize_row(row: Row) -> dict[str, Any]:
    """Coerce a store row into push-payload form.

    Numeric columns become float, timestamps become ISO-8601 strings.

    Raises:
        ValueError: a known numeric field holds a non-numeric value.
    """
    return {k: _coerce_value(k, v) for k, v in row.items()}


def _sensor_events(
    row: Row,
    temperature: TelemetryKind,
    humidity: TelemetryKind,
) -> list[TelemetryEvent]:
    data = normalize_row(row)
    waktu = data.get("waktu")
    return [
        TelemetryEvent(kind=temperature, payload={"suhu": data["suhu"], "waktu": waktu}),
        TelemetryEvent(kind=humidity, payload={"kelembapan": data["kelembapan"], "waktu": waktu}),
    ]


def _noc_events(row: Row) -> list[TelemetryEvent]:
    return _sensor_events(row, TelemetryKind.NOC_TEMPERATURE, TelemetryKind.NOC_HUMIDITY)


def _ups_events(row: Row) -> list[TelemetryEvent]:
    return _sensor_events(row, TelemetryKind.UPS_TEMPERATURE, TelemetryKind.UPS_HUMIDITY)


def _electrical_events(row: Row) -> list[TelemetryEvent]:
    return [TelemetryEvent(kind=TelemetryKind.ELECTRICAL, payload=normalize_row(row))]


def _fire_smoke_events(row: Row) -> list[TelemetryEvent]:
    return [TelemetryEvent(kind=TelemetryKind.FIRE_SMOKE, payload=normalize_row(row))]


RowMapper = Callable[[Row], list[TelemetryEvent]]

# Latest-row tables and the events each produces.
_LATEST_ROW_TABLES: dict[str, RowMapper] = {
    NOC_SENSOR_TABLE: _noc_events,
    UPS_SENSOR_TABLE: _ups_events,
    ELECTRICAL_TABLE: _electrical_events,
    FIRE_SMOKE_TABLE: _fire_smoke_events,
}


class Sampler(BasePoller):
    """Samples the five monitored tables once per tick.

    Each table is read in its own task; a failing table is logged and
    skipped for that tick without affecting the others. Events are emitted
    as soon as their table's read completes, so ordering across tables is
    not defined.

    The sampler owns the last-known event per kind; ``latest()`` returns a
    copy of the map. The events themselves are frozen and shared.
    """

    def __init__(
        self,
        store: ReadingStore,
        config: SamplerConfig | None = None,
    ) -> None:
        self._config = config or SamplerConfig()
        super().__init__(name="sampler", interval_secs=self._config.interval_secs)
        self._store = store
        self._latest: dict[TelemetryKind, TelemetryEvent] = {}
        self._table_errors: dict[str, int] = {}

    @property
    def table_errors(self) -> dict[str, int]:
        """Failure count per table since start."""
        return dict(self._table_errors)

    def latest(self) -> dict[TelemetryKind, TelemetryEvent]:
        return dict(self._latest)

    async def fetch_access_logs(self) -> list[dict[str, Any]]:
        """Newest access-log entries, newest first. Shared by push and pull."""
        rows = await self._store.recent_rows(
            ACCESS_LOG_TABLE,
            order_by="access_time",
            limit=self._config.access_log_limit,
        )
        return [normalize_row(r) for r in rows]

    async def tick(self) -> None:
        jobs: list[tuple[str, Awaitable[list[TelemetryEvent]]]] = [
            (table, self._sample_latest(table, mapper))
            for table, mapper in _LATEST_ROW_TABLES.items()
        ]
        jobs.append((ACCESS_LOG_TABLE, self._sample_access_logs()))
        await asyncio.gather(*(self._run_table(table, job) for table, job in jobs))

    async def _run_table(
        self,
        table: str,
        job: Awaitable[list[TelemetryEvent]],
    ) -> None:
        try:
            events = await job
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._table_errors[table] = self._table_errors.get(table, 0) + 1
            logger.warning(
                "tick_table_error",
                table=table,
                error=str(exc),
                error_count=self._table_errors[table],
            )
            return

        for event in events:
            self._latest[event.kind] = event
            await self._emit(event)

    async def _sample_latest(self, table: str, mapper: RowMapper) -> list[TelemetryEvent]:
        row = await self._store.latest_row(table)
        if row is None:
            return []
        return mapper(row)

    async def _sample_access_logs(self) -> list[TelemetryEvent]:
        entries = await self.fetch_access_logs()
        if not entries:
            return []
        return [TelemetryEvent(kind=TelemetryKind.ACCESS_LOG, payload=entries)]
