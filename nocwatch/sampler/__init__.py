"""Periodic sampling of the sensor store."""

from nocwatch.sampler.base import BasePoller, TelemetryCallback
from nocwatch.sampler.sampler import Sampler, normalize_row

__all__ = [
    "BasePoller",
    "Sampler",
    "TelemetryCallback",
    "normalize_row",
]
