"""Shared fixtures — an in-memory reading store."""

from __future__ import annotations

from typing import Any

import pytest

from nocwatch.core.exceptions import StoreError, UnknownTableError
from nocwatch.core.types import (
    ACCESS_LOG_TABLE,
    ELECTRICAL_TABLE,
    FIRE_SMOKE_TABLE,
    NOC_SENSOR_TABLE,
    UPS_SENSOR_TABLE,
)
from nocwatch.store.base import ReadingStore, Row

_TABLES = (NOC_SENSOR_TABLE, UPS_SENSOR_TABLE, ELECTRICAL_TABLE, FIRE_SMOKE_TABLE, ACCESS_LOG_TABLE)


class FakeStore(ReadingStore):
    """ReadingStore over plain lists. Tables listed in ``failing`` raise StoreError."""

    def __init__(self) -> None:
        self.tables: dict[str, list[Row]] = {t: [] for t in _TABLES}
        self.failing: set[str] = set()
        self.reachable = True
        self.closed = False

    def add(self, table: str, **row: Any) -> None:
        rows = self.tables[table]
        row.setdefault("id", len(rows) + 1)
        rows.append(row)

    def _rows(self, table: str) -> list[Row]:
        if table not in self.tables:
            raise UnknownTableError(table)
        if table in self.failing:
            raise StoreError(f"{table} unavailable")
        return self.tables[table]

    async def ping(self) -> bool:
        return self.reachable

    async def latest_row(self, table: str) -> Row | None:
        rows = self._rows(table)
        if not rows:
            return None
        return dict(max(rows, key=lambda r: r["id"]))

    async def recent_rows(self, table: str, order_by: str, limit: int) -> list[Row]:
        rows = sorted(self._rows(table), key=lambda r: r[order_by], reverse=True)
        return [dict(r) for r in rows[:limit]]

    async def export_rows(self, table: str, limit: int | None = None) -> list[Row]:
        rows = sorted(self._rows(table), key=lambda r: r["id"], reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return [dict(r) for r in rows]

    async def close(self) -> None:
        self.closed = True


def seed_healthy(store: FakeStore) -> None:
    """One in-range row per latest-row table plus two access-log entries."""
    store.add(NOC_SENSOR_TABLE, suhu="21.5", kelembapan="45", waktu="2026-01-01 00:00:00")
    store.add(UPS_SENSOR_TABLE, suhu="20.0", kelembapan="50", waktu="2026-01-01 00:00:00")
    store.add(ELECTRICAL_TABLE, phase_r=220, phase_s=221, phase_t=219, waktu="2026-01-01 00:00:00")
    store.add(FIRE_SMOKE_TABLE, api_value=1024, asap_value=1, waktu="2026-01-01 00:00:00")
    store.add(ACCESS_LOG_TABLE, name="alice", access_time="2026-01-01 00:00:01")
    store.add(ACCESS_LOG_TABLE, name="bob", access_time="2026-01-01 00:00:02")


@pytest.fixture
def fake_store() -> FakeStore:
    store = FakeStore()
    seed_healthy(store)
    return store


@pytest.fixture
def empty_store() -> FakeStore:
    return FakeStore()
