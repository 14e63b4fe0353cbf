"""Reading store interface — read-only access to the sensor tables."""

from __future__ import annotations

import abc
from typing import Any

Row = dict[str, Any]


class ReadingStore(abc.ABC):
    """Read-only query surface used by the sampler and the HTTP endpoints.

    Implementations raise ``StoreError`` on any query failure and must only
    be called with table names from the fixed set in ``nocwatch.core.types``.
    """

    @abc.abstractmethod
    async def ping(self) -> bool:
        """Acquire and release one connection. Never raises."""

    @abc.abstractmethod
    async def latest_row(self, table: str) -> Row | None:
        """Return the newest row of *table* by id, or None when empty."""

    @abc.abstractmethod
    async def recent_rows(self, table: str, order_by: str, limit: int) -> list[Row]:
        """Return up to *limit* rows ordered by *order_by* descending."""

    @abc.abstractmethod
    async def export_rows(self, table: str, limit: int | None = None) -> list[Row]:
        """Return rows of *table*, newest first, for spreadsheet export."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release pooled connections."""
