"""Upstream market data providers."""

from pricehub.providers.client import MarketDataClient, ProviderError, ProviderRateLimitError
from pricehub.providers.market import (
    coincap_id_for_symbol,
    fetch_history,
    fetch_prices_batch,
    fetch_usd_jpy,
    interval_for_days,
    load_history,
    price_key,
    to_jpy,
)
from pricehub.providers.rate_limiter import HostRateLimiter


__all__ = [
    "HostRateLimiter",
    "MarketDataClient",
    "ProviderError",
    "ProviderRateLimitError",
    "coincap_id_for_symbol",
    "fetch_history",
    "fetch_prices_batch",
    "fetch_usd_jpy",
    "interval_for_days",
    "load_history",
    "price_key",
    "to_jpy",
]
