"""Core module — config, types, logging, exceptions."""

from nocwatch.core.config import Settings, get_settings, load_settings, reset_settings
from nocwatch.core.logging import setup_logging
from nocwatch.core.types import (
    AlertRecord,
    Severity,
    TelemetryEvent,
    TelemetryKind,
    Transport,
    alert_key,
)

__all__ = [
    "AlertRecord",
    "Settings",
    "Severity",
    "TelemetryEvent",
    "TelemetryKind",
    "Transport",
    "alert_key",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
