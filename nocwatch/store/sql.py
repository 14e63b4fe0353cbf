"""SQLAlchemy asyncio implementation of the reading store."""

from __future__ import annotations

import structlog
from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from nocwatch.core.config import DatabaseConfig
from nocwatch.core.exceptions import StoreError, UnknownTableError
from nocwatch.core.types import (
    ACCESS_LOG_TABLE,
    ELECTRICAL_TABLE,
    FIRE_SMOKE_TABLE,
    NOC_SENSOR_TABLE,
    UPS_SENSOR_TABLE,
)
from nocwatch.store.base import ReadingStore, Row

logger = structlog.stdlib.get_logger()

_KNOWN_TABLES = frozenset({
    NOC_SENSOR_TABLE,
    UPS_SENSOR_TABLE,
    ELECTRICAL_TABLE,
    FIRE_SMOKE_TABLE,
    ACCESS_LOG_TABLE,
})

_KNOWN_ORDER_COLUMNS = frozenset({"id", "access_time"})


class SqlReadingStore(ReadingStore):
    """Query the sensor tables through a pooled async engine.

    Table and column names are interpolated into SQL, so both are checked
    against fixed sets and quoted by the dialect before use.
    """

    def __init__(self, url: str | URL, *, connect_timeout_secs: float | None = None) -> None:
        connect_args: dict[str, float] = {}
        if connect_timeout_secs is not None and str(url).startswith("mysql"):
            connect_args["connect_timeout"] = connect_timeout_secs
        self._engine: AsyncEngine = create_async_engine(
            url,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> SqlReadingStore:
        return cls(config.sqlalchemy_url(), connect_timeout_secs=config.connect_timeout_secs)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    def _quote(self, name: str, allowed: frozenset[str]) -> str:
        if name not in allowed:
            raise UnknownTableError(name)
        return self._engine.dialect.identifier_preparer.quote(name)

    async def _fetch(self, sql: str, **params: object) -> list[Row]:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text(sql), params)
                return [dict(r._mapping) for r in result]
        except Exception as exc:
            raise StoreError(str(exc)) from exc

    async def ping(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as exc:
            logger.warning("store_ping_failed", error=str(exc))
            return False
        return True

    async def latest_row(self, table: str) -> Row | None:
        tbl = self._quote(table, _KNOWN_TABLES)
        rows = await self._fetch(f"SELECT * FROM {tbl} ORDER BY id DESC LIMIT 1")
        return rows[0] if rows else None

    async def recent_rows(self, table: str, order_by: str, limit: int) -> list[Row]:
        tbl = self._quote(table, _KNOWN_TABLES)
        col = self._quote(order_by, _KNOWN_ORDER_COLUMNS)
        return await self._fetch(
            f"SELECT * FROM {tbl} ORDER BY {col} DESC LIMIT :limit",
            limit=limit,
        )

    async def export_rows(self, table: str, limit: int | None = None) -> list[Row]:
        tbl = self._quote(table, _KNOWN_TABLES)
        if limit is None:
            return await self._fetch(f"SELECT * FROM {tbl} ORDER BY id DESC")
        return await self._fetch(
            f"SELECT * FROM {tbl} ORDER BY id DESC LIMIT :limit",
            limit=limit,
        )

    async def close(self) -> None:
        await self._engine.dispose()
