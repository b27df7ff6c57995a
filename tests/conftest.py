"""
Pytest configuration and shared fixtures.

Provides reusable test fixtures for all test modules.
"""

import pytest

from pricehub.config.settings import Settings
from pricehub.core.types import ChainKey, ProviderName, TokenRef, Universe
from pricehub.market.service import MarketService
from pricehub.market.universe import build_universe
from pricehub.storage.kv import KVCache, MemoryStore
from pricehub.telemetry.metrics import MetricsCollector
from tests.mocks.clock import FakeClock
from tests.mocks.providers import MockMarketClient


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings with an in-process lock allowed and no Redis."""
    return Settings(
        _env_file=None,
        redis_url=None,
        allow_local_trade_lock=True,
        fx_fallback_rate=150.0,
        refresh_interval_seconds=0.0,
    )


@pytest.fixture
def strict_settings() -> Settings:
    """Settings that require a shared store for trades."""
    return Settings(_env_file=None, redis_url=None, allow_local_trade_lock=False)


# =============================================================================
# Storage Fixtures
# =============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    """Controllable clock for TTL tests."""
    return FakeClock()


@pytest.fixture
def memory_store(fake_clock: FakeClock) -> MemoryStore:
    """Memory store driven by the fake clock."""
    return MemoryStore(clock=fake_clock)


@pytest.fixture
def cache(memory_store: MemoryStore) -> KVCache:
    """Memory-only cache."""
    return KVCache(memory_store=memory_store)


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh metrics collector."""
    return MetricsCollector()


# =============================================================================
# Market Fixtures
# =============================================================================


@pytest.fixture
def mock_client() -> MockMarketClient:
    """Provider client serving a full market snapshot at 155 JPY/USD."""
    return MockMarketClient()


@pytest.fixture
def service(
    cache: KVCache,
    mock_client: MockMarketClient,
    settings: Settings,
    metrics: MetricsCollector,
) -> MarketService:
    """Market service over the memory cache and mock client."""
    return MarketService(cache, mock_client, settings, metrics)  # type: ignore[arg-type]


@pytest.fixture
def universe() -> Universe:
    """Static universe stamped at a fixed time."""
    return build_universe(now_ms=1704067200000)


@pytest.fixture
def btc_token() -> TokenRef:
    """BTC listed under majors."""
    return TokenRef(
        symbol="BTC",
        name="Bitcoin",
        chain=ChainKey.MAJOR,
        provider=ProviderName.COINCAP,
        provider_id="bitcoin",
    )


@pytest.fixture
def pepe_token() -> TokenRef:
    """Token priced only through CoinPaprika."""
    return TokenRef(
        symbol="PEPE",
        chain=ChainKey.MAJOR,
        provider=ProviderName.COINPAPRIKA,
        provider_id="pepe-pepe",
    )
