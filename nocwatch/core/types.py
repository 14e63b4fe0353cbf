"""Domain types: telemetry events, alerts, transports."""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from enum import IntEnum, StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ── Store Tables ─────────────────────────────────────────────────

NOC_SENSOR_TABLE = "sensor_data"
UPS_SENSOR_TABLE = "sensor_data1"
ELECTRICAL_TABLE = "listrik_noc"
FIRE_SMOKE_TABLE = "api_asap_data"
ACCESS_LOG_TABLE = "access_logs"

# Tables that may be exported over HTTP. Anything else is rejected before
# it reaches the store.
EXPORTABLE_TABLES: frozenset[str] = frozenset({
    NOC_SENSOR_TABLE,
    UPS_SENSOR_TABLE,
    ELECTRICAL_TABLE,
    FIRE_SMOKE_TABLE,
})


# ── Telemetry ────────────────────────────────────────────────────


class TelemetryKind(StrEnum):
    """Push event name per sensor reading type."""

    NOC_TEMPERATURE = "noc_temperature"
    UPS_TEMPERATURE = "ups_temperature"
    NOC_HUMIDITY = "noc_humidity"
    UPS_HUMIDITY = "ups_humidity"
    ELECTRICAL = "electrical_data"
    FIRE_SMOKE = "fire_smoke_data"
    ACCESS_LOG = "access_logs"


Payload = Mapping[str, Any] | Sequence[Mapping[str, Any]]


def _freeze(value: Any) -> Any:
    """Read-only deep copy: mappings become proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


class TelemetryEvent(BaseModel):
    """One sampled reading, immutable once built by the sampler."""

    model_config = ConfigDict(frozen=True)

    kind: TelemetryKind
    payload: Payload
    sampled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("payload", mode="after")
    @classmethod
    def _freeze_payload(cls, v: Payload) -> Payload:
        # Every observer receives the same instance.
        return _freeze(v)

    def to_wire(self) -> dict[str, Any]:
        """Frame sent on the push channel."""
        return {
            "event": self.kind.value,
            "data": _thaw(self.payload),
            "sampled_at": self.sampled_at.isoformat(),
        }

    @classmethod
    def from_wire(cls, frame: dict[str, Any]) -> TelemetryEvent:
        return cls(
            kind=TelemetryKind(frame["event"]),
            payload=frame["data"],
            sampled_at=datetime.fromisoformat(frame["sampled_at"]),
        )


# ── Alerts ───────────────────────────────────────────────────────


class Severity(IntEnum):
    """Alert tier, ordered so comparisons work naturally."""

    WARNING = 2
    CRITICAL = 3


class AlertRecord(BaseModel):
    """An active alert. At most one per key."""

    key: str
    message: str
    severity: Severity
    raised_at: float = Field(default_factory=time.time)


def alert_key(metric: str, condition: str) -> str:
    """Dedup key from a metric name and its condition class."""
    return f"{metric}:{condition}"


CONNECTIVITY_KEY = alert_key("connectivity", "degraded")


# ── Transports ───────────────────────────────────────────────────


class Transport(StrEnum):
    """Push delivery mechanism."""

    PRIMARY = "websocket"
    FALLBACK = "polling"
