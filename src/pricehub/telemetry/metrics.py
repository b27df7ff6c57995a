"""
Metrics collection for service monitoring.

Tracks upstream latencies, cache activity and trade execution
outcomes with in-memory rolling windows.
"""

import time
from collections import deque
from dataclasses import dataclass

from pricehub.config.constants import METRICS_LATENCY_WINDOW


@dataclass
class LatencyStats:
    """Aggregated latency statistics."""

    min_us: int = 0
    max_us: int = 0
    avg_us: float = 0.0
    p50_us: int = 0
    p95_us: int = 0
    p99_us: int = 0
    count: int = 0


@dataclass
class TradeStats:
    """Trade execution statistics."""

    total: int = 0
    executed: int = 0
    duplicates: int = 0
    conflicts: int = 0
    rejected: int = 0
    failed: int = 0

    @property
    def success_rate(self) -> float:
        """Share of requests that executed or replayed a stored result."""
        if self.total == 0:
            return 0.0
        return (self.executed + self.duplicates) / self.total

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "executed": self.executed,
            "duplicates": self.duplicates,
            "conflicts": self.conflicts,
            "rejected": self.rejected,
            "failed": self.failed,
        }


class MetricsCollector:
    """
    Collects and aggregates service metrics.

    Features:
    - Rolling window latency tracking
    - Counter-based event tracking
    - Trade outcome accounting
    """

    def __init__(
        self,
        latency_window_size: int = METRICS_LATENCY_WINDOW,
    ) -> None:
        """
        Initialize metrics collector.

        Args:
            latency_window_size: Number of samples to keep for latency stats.
        """
        self._window_size = latency_window_size
        self._latencies: dict[str, deque[int]] = {}
        self._counters: dict[str, int] = {}
        self._trade_stats = TradeStats()
        self._start_time = time.time()

    def record_latency(self, name: str, latency_us: int) -> None:
        """
        Record a latency measurement.

        Args:
            name: Metric name (e.g., "provider.api.coincap.io").
            latency_us: Latency in microseconds.
        """
        if name not in self._latencies:
            self._latencies[name] = deque(maxlen=self._window_size)

        self._latencies[name].append(latency_us)

    def increment_counter(self, name: str, value: int = 1) -> None:
        """
        Increment a counter.

        Args:
            name: Counter name.
            value: Amount to increment.
        """
        self._counters[name] = self._counters.get(name, 0) + value

    def get_counter(self, name: str) -> int:
        """Get counter value."""
        return self._counters.get(name, 0)

    def record_trade(self, outcome: str) -> None:
        """
        Record a trade execution outcome.

        Args:
            outcome: One of "executed", "duplicate", "conflict", "rejected",
                "failed".
        """
        self._trade_stats.total += 1
        if outcome == "executed":
            self._trade_stats.executed += 1
        elif outcome == "duplicate":
            self._trade_stats.duplicates += 1
        elif outcome == "conflict":
            self._trade_stats.conflicts += 1
        elif outcome == "rejected":
            self._trade_stats.rejected += 1
        else:
            self._trade_stats.failed += 1

    def get_latency_stats(self, name: str) -> LatencyStats:
        """
        Get latency statistics for a metric.

        Args:
            name: Metric name.

        Returns:
            LatencyStats with aggregated values.
        """
        samples = self._latencies.get(name)
        if not samples:
            return LatencyStats()

        sorted_samples = sorted(samples)
        n = len(sorted_samples)

        return LatencyStats(
            min_us=sorted_samples[0],
            max_us=sorted_samples[-1],
            avg_us=sum(sorted_samples) / n,
            p50_us=sorted_samples[n // 2],
            p95_us=sorted_samples[int(n * 0.95)],
            p99_us=sorted_samples[int(n * 0.99)] if n > 1 else sorted_samples[-1],
            count=n,
        )

    def get_all_latency_stats(self) -> dict[str, LatencyStats]:
        """Get latency stats for all metrics."""
        return {name: self.get_latency_stats(name) for name in self._latencies}

    @property
    def trade_stats(self) -> TradeStats:
        """Get trade statistics."""
        return self._trade_stats

    @property
    def uptime_seconds(self) -> float:
        """Get uptime in seconds."""
        return time.time() - self._start_time

    def to_dict(self) -> dict[str, object]:
        """
        Export all metrics as a dict.

        Returns:
            Dict representation of all metrics.
        """
        return {
            "uptime_seconds": self.uptime_seconds,
            "counters": dict(self._counters),
            "latencies": {
                name: {
                    "min": stats.min_us,
                    "max": stats.max_us,
                    "avg": stats.avg_us,
                    "p50": stats.p50_us,
                    "p95": stats.p95_us,
                    "p99": stats.p99_us,
                    "count": stats.count,
                }
                for name, stats in self.get_all_latency_stats().items()
            },
            "trades": {
                **self._trade_stats.to_dict(),
                "success_rate": self._trade_stats.success_rate,
            },
        }

    def reset(self) -> None:
        """Reset all metrics."""
        self._latencies.clear()
        self._counters.clear()
        self._trade_stats = TradeStats()
        self._start_time = time.time()
