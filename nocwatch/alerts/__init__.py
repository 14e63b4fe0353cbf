"""Threshold evaluation and the alert lifecycle."""

from nocwatch.alerts.book import AlertBook
from nocwatch.alerts.engine import ThresholdEngine
from nocwatch.alerts.monitor import AlertMonitor
from nocwatch.alerts.sinks import (
    AlertSink,
    CompositeSink,
    LogSink,
    WebhookSink,
    create_alert_sink,
)
from nocwatch.alerts.thresholds import Breach, classify_binary, classify_range

__all__ = [
    "AlertBook",
    "AlertMonitor",
    "AlertSink",
    "Breach",
    "CompositeSink",
    "LogSink",
    "ThresholdEngine",
    "WebhookSink",
    "classify_binary",
    "classify_range",
    "create_alert_sink",
]
