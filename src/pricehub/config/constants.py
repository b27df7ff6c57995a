"""
Service constants and configuration values.

This module contains all hardcoded values used throughout the service.
Values are organized by category for easy maintenance and auditing.
"""

from typing import Final


# =============================================================================
# Upstream Provider Endpoints
# =============================================================================

COINCAP_REST_URL: Final[str] = "https://api.coincap.io/v2"
COINPAPRIKA_REST_URL: Final[str] = "https://api.coinpaprika.com/v1"
EXCHANGERATE_REST_URL: Final[str] = "https://api.exchangerate.host"

# API Endpoints
ENDPOINT_COINCAP_ASSETS: Final[str] = "/assets"
ENDPOINT_COINCAP_HISTORY: Final[str] = "/assets/{asset_id}/history"
ENDPOINT_PAPRIKA_TICKERS: Final[str] = "/tickers"
ENDPOINT_FX_LATEST: Final[str] = "/latest"

# CoinCap returns at most this many assets per page
COINCAP_ASSET_LIMIT: Final[int] = 2000


# =============================================================================
# Cache Keys
# =============================================================================

KEY_UNIVERSE: Final[str] = "universe:v1"
KEY_PRICES: Final[str] = "prices:v1"
KEY_FX_USD_JPY: Final[str] = "fx:usd_jpy"

KEY_IDEMPOTENCY_PREFIX: Final[str] = "idem:"
KEY_TRADE_LOCK_PREFIX: Final[str] = "lock:trade:"
KEY_PRICES_LOCK: Final[str] = "lock:prices"
KEY_AGENT_STATE_PREFIX: Final[str] = "agent_state:"


# =============================================================================
# Time-To-Live Values (seconds)
# =============================================================================

DEFAULT_FX_TTL_SECONDS: Final[int] = 10 * 60
DEFAULT_TRADE_LOCK_TTL_SECONDS: Final[int] = 30
DEFAULT_IDEMPOTENCY_TTL_SECONDS: Final[int] = 5 * 60

# Price map read-merge-write lock
PRICES_LOCK_TTL_SECONDS: Final[int] = 10
PRICES_LOCK_POLL_SECONDS: Final[float] = 0.05


# =============================================================================
# FX Conversion
# =============================================================================

# Static USD/JPY approximation used when the FX source is unavailable
DEFAULT_FX_FALLBACK_RATE: Final[float] = 150.0

# Anything below this is treated as a broken upstream response
MIN_VALID_USD_JPY: Final[float] = 50.0

JPY_PRECISION: Final[int] = 2

FX_SOURCE_PRIMARY: Final[str] = "primary"
FX_SOURCE_FALLBACK: Final[str] = "fallback"


# =============================================================================
# Provider Rate Limiting
# =============================================================================

# Free tiers allow ~30 calls/minute, keep a buffer
DEFAULT_PROVIDER_REQUESTS_PER_MINUTE: Final[int] = 25
DEFAULT_PROVIDER_TIMEOUT_SECONDS: Final[float] = 10.0

# Used when a 429 response carries no Retry-After header
DEFAULT_RETRY_AFTER_SECONDS: Final[float] = 60.0


# =============================================================================
# Chart Intervals
# =============================================================================

CHART_INTERVAL_15M: Final[str] = "m15"
CHART_INTERVAL_1H: Final[str] = "h1"
CHART_INTERVAL_6H: Final[str] = "h6"
CHART_INTERVAL_1D: Final[str] = "d1"

DEFAULT_CHART_DAYS: Final[int] = 7


# =============================================================================
# Dashboard
# =============================================================================

TREND_TOP_N: Final[int] = 3


# =============================================================================
# Logging & Telemetry
# =============================================================================

LOG_FORMAT: Final[str] = "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

# Maximum log queue size
MAX_LOG_QUEUE_SIZE: Final[int] = 10_000

# Third-party loggers capped at WARNING
QUIET_LOGGERS: Final[tuple[str, ...]] = ("aiohttp", "asyncio", "redis")

# Samples kept per latency metric
METRICS_LATENCY_WINDOW: Final[int] = 1000
