"""Spreadsheet export of a sensor table."""

from __future__ import annotations

import io
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from nocwatch.store.base import Row

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _cell(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime) and value.tzinfo is not None:
        # Excel has no timezone support.
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        # Control characters are not allowed in sheet XML.
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def rows_to_xlsx(table: str, rows: list[Row]) -> bytes:
    """Render *rows* as a single-sheet workbook named after *table*."""
    wb = Workbook(write_only=True)
    sheet = wb.create_sheet(title=table[:31])
    if rows:
        columns = list(rows[0].keys())
        sheet.append(columns)
        for row in rows:
            sheet.append([_cell(row.get(col)) for col in columns])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
