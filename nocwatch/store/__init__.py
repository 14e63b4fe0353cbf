"""Reading store adapters."""

from nocwatch.store.base import ReadingStore, Row
from nocwatch.store.sql import SqlReadingStore

__all__ = ["ReadingStore", "Row", "SqlReadingStore"]
