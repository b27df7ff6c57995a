"""Telemetry module for logging and metrics."""

from pricehub.telemetry.logger import QueueLogging, setup_logging
from pricehub.telemetry.metrics import LatencyStats, MetricsCollector, TradeStats


__all__ = [
    "LatencyStats",
    "MetricsCollector",
    "QueueLogging",
    "TradeStats",
    "setup_logging",
]
