"""Pure threshold classification — value + bounds → breach or nothing.

Boundary values always resolve to the more severe tier: a reading equal
to a critical bound is Critical, a reading equal to a warning bound is a
Warning.
"""

from __future__ import annotations

from pydantic import BaseModel

from nocwatch.core.config import BinaryThreshold, RangeThreshold
from nocwatch.core.types import Severity, alert_key

RANGE_CONDITION = "range"
LOW_CONDITION = "low"
DETECTED_CONDITION = "detected"


class Breach(BaseModel):
    """A threshold crossing for one metric reading."""

    metric: str
    key: str
    severity: Severity
    message: str
    value: float


def _fmt(value: float) -> str:
    return f"{value:g}"


def classify_range(metric: str, value: float, bounds: RangeThreshold) -> Breach | None:
    """Select the severity tier for *value*, or None when it is in range."""
    label = bounds.label or metric
    unit = bounds.unit
    v = _fmt(value)

    def breach(condition: str, severity: Severity, message: str) -> Breach:
        return Breach(
            metric=metric,
            key=alert_key(metric, condition),
            severity=severity,
            message=message,
            value=value,
        )

    if bounds.critical_low is not None and value <= bounds.critical_low:
        return breach(
            RANGE_CONDITION,
            Severity.CRITICAL,
            f"CRITICAL ALERT: {label} is too low at {v}{unit}"
            f" (threshold: {_fmt(bounds.critical_low)}{unit})!",
        )
    if bounds.critical_high is not None and value >= bounds.critical_high:
        return breach(
            RANGE_CONDITION,
            Severity.CRITICAL,
            f"CRITICAL ALERT: {label} is too high at {v}{unit}"
            f" (threshold: {_fmt(bounds.critical_high)}{unit})!",
        )
    if bounds.warning_high is not None and value >= bounds.warning_high:
        return breach(
            RANGE_CONDITION,
            Severity.WARNING,
            f"WARNING: {label} is high at {v}{unit}"
            f" (threshold: {_fmt(bounds.warning_high)}{unit})!",
        )
    if bounds.warning_low is not None and value <= bounds.warning_low:
        return breach(
            LOW_CONDITION,
            Severity.WARNING,
            f"WARNING: {label} is low at {v}{unit}"
            f" (threshold: {_fmt(bounds.warning_low)}{unit})!",
        )
    return None


def classify_binary(metric: str, value: float, spec: BinaryThreshold) -> Breach | None:
    """Anything other than the normal sentinel is Critical."""
    if value == spec.normal:
        return None
    label = spec.label or metric
    return Breach(
        metric=metric,
        key=alert_key(metric, DETECTED_CONDITION),
        severity=Severity.CRITICAL,
        message=f"CRITICAL ALERT: {label} detected (reading {_fmt(value)})! Take immediate action.",
        value=value,
    )


def range_keys(metric: str) -> tuple[str, str]:
    return alert_key(metric, RANGE_CONDITION), alert_key(metric, LOW_CONDITION)


def binary_keys(metric: str) -> tuple[str]:
    return (alert_key(metric, DETECTED_CONDITION),)
