"""Tests for threshold classification — every tier boundary, binary sentinels."""

from __future__ import annotations

from nocwatch.alerts.thresholds import (
    binary_keys,
    classify_binary,
    classify_range,
    range_keys,
)
from nocwatch.core.config import BinaryThreshold, RangeThreshold, ThresholdConfig
from nocwatch.core.types import Severity

VOLTAGE = RangeThreshold(
    label="Phase R",
    unit="V",
    warning_low=210,
    warning_high=240,
    critical_low=200,
    critical_high=250,
)


def _tier(value: float, bounds: RangeThreshold = VOLTAGE) -> tuple[Severity, str] | None:
    breach = classify_range("phase_r", value, bounds)
    if breach is None:
        return None
    return breach.severity, breach.key


# ── Range metrics ────────────────────────────────────────────────


class TestRangeTiers:
    def test_in_range(self) -> None:
        assert _tier(225) is None
        assert _tier(210.1) is None
        assert _tier(239.9) is None

    def test_high_warning(self) -> None:
        assert _tier(245) == (Severity.WARNING, "phase_r:range")

    def test_high_critical(self) -> None:
        assert _tier(260) == (Severity.CRITICAL, "phase_r:range")

    def test_low_warning(self) -> None:
        assert _tier(205) == (Severity.WARNING, "phase_r:low")

    def test_low_critical(self) -> None:
        assert _tier(190) == (Severity.CRITICAL, "phase_r:range")


class TestBoundaries:
    """Ties resolve to the more severe tier at every bound."""

    def test_equal_warning_high_is_warning(self) -> None:
        assert _tier(240) == (Severity.WARNING, "phase_r:range")

    def test_equal_critical_high_is_critical(self) -> None:
        assert _tier(250) == (Severity.CRITICAL, "phase_r:range")

    def test_equal_warning_low_is_warning(self) -> None:
        assert _tier(210) == (Severity.WARNING, "phase_r:low")

    def test_equal_critical_low_is_critical(self) -> None:
        assert _tier(200) == (Severity.CRITICAL, "phase_r:range")

    def test_exactly_one_tier_across_sweep(self) -> None:
        seen: set[tuple[Severity, str] | None] = set()
        for tenth in range(1800, 2700):
            seen.add(_tier(tenth / 10))
        assert seen == {
            None,
            (Severity.WARNING, "phase_r:range"),
            (Severity.WARNING, "phase_r:low"),
            (Severity.CRITICAL, "phase_r:range"),
        }


class TestPartialBounds:
    def test_no_critical_bounds(self) -> None:
        humidity = RangeThreshold(label="NOC humidity", unit="%", warning_low=30, warning_high=60)
        assert classify_range("noc_humidity", 95, humidity).severity is Severity.WARNING
        assert classify_range("noc_humidity", 10, humidity).key == "noc_humidity:low"

    def test_unbounded_side(self) -> None:
        high_only = RangeThreshold(warning_high=40, critical_high=50)
        assert classify_range("x", -1000, high_only) is None
        assert classify_range("x", 55, high_only).severity is Severity.CRITICAL

    def test_coinciding_low_bounds_resolve_critical(self) -> None:
        temp = ThresholdConfig().ranges["noc_temperature"]
        breach = classify_range("noc_temperature", 18, temp)
        assert breach is not None
        assert breach.severity is Severity.CRITICAL


class TestMessages:
    def test_low_voltage_message_contains_reading(self) -> None:
        breach = classify_range("phase_r", 205, VOLTAGE)
        assert breach is not None
        assert "205" in breach.message
        assert breach.message == "WARNING: Phase R is low at 205V (threshold: 210V)!"

    def test_critical_message(self) -> None:
        breach = classify_range("phase_r", 251.5, VOLTAGE)
        assert breach is not None
        assert breach.message.startswith("CRITICAL ALERT: Phase R is too high at 251.5V")

    def test_label_defaults_to_metric(self) -> None:
        breach = classify_range("phase_s", 260, RangeThreshold(critical_high=250))
        assert breach is not None
        assert "phase_s" in breach.message


# ── Binary metrics ───────────────────────────────────────────────


class TestBinary:
    FIRE = BinaryThreshold(label="Fire", normal=1024)
    SMOKE = BinaryThreshold(label="Smoke", normal=1)

    def test_normal_sentinel_is_quiet(self) -> None:
        assert classify_binary("fire", 1024, self.FIRE) is None
        assert classify_binary("smoke", 1, self.SMOKE) is None

    def test_fire_zero_is_critical(self) -> None:
        breach = classify_binary("fire", 0, self.FIRE)
        assert breach is not None
        assert breach.severity is Severity.CRITICAL
        assert breach.key == "fire:detected"
        assert "Fire detected" in breach.message

    def test_smoke_zero_is_critical(self) -> None:
        breach = classify_binary("smoke", 0, self.SMOKE)
        assert breach is not None
        assert breach.severity is Severity.CRITICAL

    def test_any_non_sentinel_value_triggers(self) -> None:
        assert classify_binary("fire", 512, self.FIRE) is not None


class TestKeys:
    def test_range_keys(self) -> None:
        assert range_keys("phase_t") == ("phase_t:range", "phase_t:low")

    def test_binary_keys(self) -> None:
        assert binary_keys("fire") == ("fire:detected",)
