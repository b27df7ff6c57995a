"""
Unit tests for settings, metrics, logging and time helpers.
"""

import logging

import pytest
from pydantic import ValidationError

from pricehub.config.settings import Settings
from pricehub.telemetry.logger import QueueLogging, UtcFormatter
from pricehub.telemetry.metrics import MetricsCollector
from pricehub.utils.time import is_older_than


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, settings: Settings) -> None:
        """Test service defaults."""
        assert settings.fx_fallback_rate == 150.0
        assert settings.fx_ttl_seconds == 600
        assert settings.fx_ttl_ms == 600_000
        assert settings.trade_lock_ttl_seconds == 30
        assert settings.idempotency_ttl_seconds == 300
        assert settings.refresh_scopes == ["majors"]
        assert settings.uses_redis is False

    def test_kv_url_alias(self) -> None:
        """Test the KV_URL spelling configures Redis."""
        settings = Settings(_env_file=None, kv_url="redis://localhost:6379/0")

        assert settings.uses_redis is True
        assert settings.redis_url is not None
        assert settings.redis_url.get_secret_value() == "redis://localhost:6379/0"

    def test_rejects_unknown_scope(self) -> None:
        """Test refresh scopes are validated."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, refresh_scopes=["majors", "solana"])

    def test_rejects_implausible_fallback(self) -> None:
        """Test the FX fallback must pass the sanity floor."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, fx_fallback_rate=1.0)


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_counters(self, metrics: MetricsCollector) -> None:
        """Test counters accumulate."""
        metrics.increment_counter("fx.refreshed")
        metrics.increment_counter("fx.refreshed", 2)

        assert metrics.get_counter("fx.refreshed") == 3
        assert metrics.get_counter("unknown") == 0

    def test_latency_percentiles(self, metrics: MetricsCollector) -> None:
        """Test latency aggregation."""
        for latency in range(1, 101):
            metrics.record_latency("provider.api.coincap.io", latency)

        stats = metrics.get_latency_stats("provider.api.coincap.io")

        assert stats.count == 100
        assert stats.min_us == 1
        assert stats.max_us == 100
        assert stats.p50_us == 51
        assert stats.p95_us == 96

    def test_latency_window(self) -> None:
        """Test only the newest samples are kept."""
        metrics = MetricsCollector(latency_window_size=3)
        for latency in (100, 1, 2, 3):
            metrics.record_latency("trade.execute", latency)

        assert metrics.get_latency_stats("trade.execute").max_us == 3

    def test_trade_outcomes(self, metrics: MetricsCollector) -> None:
        """Test trade outcomes are bucketed."""
        for outcome in ("executed", "executed", "duplicate", "conflict", "rejected"):
            metrics.record_trade(outcome)

        stats = metrics.trade_stats
        assert stats.total == 5
        assert stats.executed == 2
        assert stats.duplicates == 1
        assert stats.conflicts == 1
        assert stats.rejected == 1
        assert stats.failed == 0
        assert stats.success_rate == 0.6

    def test_to_dict_and_reset(self, metrics: MetricsCollector) -> None:
        """Test export shape and reset."""
        metrics.increment_counter("prices.updated", 10)
        metrics.record_latency("trade.execute", 42)

        data = metrics.to_dict()
        assert data["counters"] == {"prices.updated": 10}
        assert set(data) == {"uptime_seconds", "counters", "latencies", "trades"}

        metrics.reset()
        assert metrics.get_counter("prices.updated") == 0
        assert metrics.get_all_latency_stats() == {}


class TestTimeHelpers:
    """Tests for timestamp helpers."""

    def test_is_older_than(self) -> None:
        """Test TTL checks are strict."""
        assert is_older_than(1000, 600, now_ms=1600) is False
        assert is_older_than(1000, 600, now_ms=1601) is True


class _CollectingHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.lines: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.lines.append(self.format(record))


class TestQueueLogging:
    """Tests for queue-based logging."""

    def test_records_reach_sinks(self) -> None:
        """Test records are written by the listener and flushed on stop."""
        sink = _CollectingHandler()
        sink.setFormatter(UtcFormatter("%(asctime)s %(name)s %(message)s", "%Y"))
        queue_logging = QueueLogging(logging.INFO)

        queue_logging.start(sink)
        try:
            logging.getLogger("pricehub.test").info("saved %d prices", 3)
            logging.getLogger("pricehub.test").debug("dropped")
        finally:
            queue_logging.stop()

        assert len(sink.lines) == 1
        assert sink.lines[0].endswith("pricehub.test saved 3 prices")

    def test_stop_detaches(self) -> None:
        """Test the queue handler is removed from the root logger."""
        queue_logging = QueueLogging(logging.INFO)

        with queue_logging:
            assert queue_logging._handler in logging.getLogger().handlers

        assert queue_logging._handler not in logging.getLogger().handlers
