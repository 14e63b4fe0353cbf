"""Tests for the XLSX export writer."""

from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from openpyxl import load_workbook

from nocwatch.server.export import rows_to_xlsx


def _read(body: bytes, sheet: str) -> list[tuple]:
    wb = load_workbook(io.BytesIO(body))
    return list(wb[sheet].iter_rows(values_only=True))


class TestRowsToXlsx:
    def test_header_then_rows(self) -> None:
        rows = [{"suhu": Decimal("21.5"), "waktu": "2026-01-01 00:00:00"}]
        assert _read(rows_to_xlsx("sensor_data", rows), "sensor_data") == [
            ("suhu", "waktu"),
            (21.5, "2026-01-01 00:00:00"),
        ]

    def test_empty_table_has_empty_sheet(self) -> None:
        assert _read(rows_to_xlsx("sensor_data1", []), "sensor_data1") == []

    def test_aware_datetime_written_as_utc(self) -> None:
        local = datetime(2026, 1, 1, 7, 0, tzinfo=timezone(timedelta(hours=7)))
        rows = _read(rows_to_xlsx("listrik_noc", [{"waktu": local}]), "listrik_noc")
        assert rows[1][0] == datetime(2026, 1, 1, 0, 0)

    def test_control_characters_stripped(self) -> None:
        rows = [{"note": "door\x07 forced\x1b", "raw": b"tag\x00id"}]
        body = rows_to_xlsx("api_asap_data", rows)
        assert _read(body, "api_asap_data")[1] == ("door forced", "tagid")
