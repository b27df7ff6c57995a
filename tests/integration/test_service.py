"""
Integration tests for the market service.

Tests the refresh and read paths against the memory cache and the
mock provider client.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from pricehub.config.settings import Settings
from pricehub.core.types import FxRate, PricePoint, TokenRef
from pricehub.market.service import MarketService, PriceRefreshLoop, UniverseNotReadyError
from pricehub.providers.client import ProviderError
from pricehub.storage.kv import KVCache, KVError, MemoryStore
from tests.mocks.providers import (
    COINCAP_ASSETS_URL,
    FX_LATEST_URL,
    PAPRIKA_TICKERS_URL,
    MockMarketClient,
    history_payload,
    history_url,
)


class TestRefresh:
    """Tests for the refresh operations."""

    @pytest.mark.asyncio
    async def test_refresh_universe(self, service: MarketService) -> None:
        """Test the universe is built and cached."""
        counts = await service.refresh_universe()

        assert counts == {"majors": 10, "bnb": 6, "polygon": 3}
        universe = await service.get_universe()
        assert universe is not None
        assert universe.majors_top10[0].symbol == "BTC"

    @pytest.mark.asyncio
    async def test_refresh_universe_keeps_favorites(
        self, service: MarketService, btc_token: TokenRef
    ) -> None:
        """Test refreshing never drops user favorites."""
        await service.set_favorites("alice", [btc_token])
        await service.refresh_universe()

        universe = await service.get_universe()
        assert universe is not None
        assert universe.favorites_by_user["alice"] == [btc_token]

    @pytest.mark.asyncio
    async def test_update_requires_universe(self, service: MarketService) -> None:
        """Test scoped updates need a cached universe."""
        with pytest.raises(UniverseNotReadyError):
            await service.update_prices("majors")

    @pytest.mark.asyncio
    async def test_update_majors(self, service: MarketService) -> None:
        """Test majors are priced and converted."""
        await service.refresh_universe()

        result = await service.update_prices("majors")

        assert result.updated == 10
        assert result.fx_rate == 155.0
        assert result.unresolved == []

        prices = await service.load_prices()
        assert set(prices) == {
            f"{s}@MAJOR"
            for s in ("BTC", "ETH", "SOL", "BNB", "XRP", "ADA", "AVAX", "DOGE", "TRX", "LINK")
        }
        btc = prices["BTC@MAJOR"]
        assert btc.usd == 65000.0
        assert btc.jpy == 10075000.0
        assert btc.change24h_pct == 2.5
        assert btc.source == "coincap"
        assert btc.updated_at == result.at

    @pytest.mark.asyncio
    async def test_update_response_body(self, service: MarketService) -> None:
        """Test the update summary body."""
        await service.refresh_universe()

        body = (await service.update_prices("bnb")).to_dict()

        assert body["ok"] is True
        assert body["scope"] == "bnb"
        assert body["updated"] == 6
        assert body["fxRate"] == 155.0
        assert "at" in body

    @pytest.mark.asyncio
    async def test_update_merges_with_cached_entries(self, service: MarketService) -> None:
        """Test entries outside the scope are kept."""
        await service.refresh_universe()
        await service.update_prices("polygon")
        await service.update_prices("majors")

        prices = await service.load_prices()
        assert "POL@POLYGON" in prices
        assert "WPOL@POLYGON" in prices
        assert "BTC@MAJOR" in prices

    @pytest.mark.asyncio
    async def test_update_empty_scope(self, service: MarketService) -> None:
        """Test a scope without tokens updates nothing."""
        await service.refresh_universe()

        result = await service.update_prices("favorites")

        assert result.updated == 0
        assert result.to_dict() == {"ok": True, "scope": "favorites", "updated": 0}

    @pytest.mark.asyncio
    async def test_update_reports_unresolved(
        self, service: MarketService, mock_client: MockMarketClient
    ) -> None:
        """Test tokens no source could price are reported."""
        await service.refresh_universe()
        mock_client.set_response(COINCAP_ASSETS_URL, {"data": []})
        mock_client.set_response(
            PAPRIKA_TICKERS_URL,
            [{"id": "btc-bitcoin", "symbol": "BTC", "quotes": {"USD": {"price": 64000.0}}}],
        )

        result = await service.update_prices("majors")

        assert result.updated == 1
        assert "ethereum" in result.unresolved
        assert "bitcoin" not in result.unresolved

    @pytest.mark.asyncio
    async def test_refresh_all(self, service: MarketService) -> None:
        """Test every key is seeded."""
        keys = await service.refresh_all()

        assert keys == ["universe:v1", "prices:v1", "fx:usd_jpy"]
        prices = await service.load_prices()
        assert len(prices) == 19
        assert prices["ALPACA@BNB"].source == "coincap"
        assert prices["ALPACA@BNB"].usd == 0.2

    @pytest.mark.asyncio
    async def test_refresh_all_without_prices(
        self, service: MarketService, mock_client: MockMarketClient
    ) -> None:
        """Test an upstream outage does not wipe cached prices."""
        await service.refresh_all()
        mock_client.fail(COINCAP_ASSETS_URL)
        mock_client.fail(PAPRIKA_TICKERS_URL)

        keys = await service.refresh_all()

        assert keys == ["universe:v1", "fx:usd_jpy"]
        assert len(await service.load_prices()) == 19


class TestFx:
    """Tests for FX caching."""

    @pytest.mark.asyncio
    async def test_cached_within_ttl(
        self, service: MarketService, mock_client: MockMarketClient
    ) -> None:
        """Test a fresh cached rate is reused."""
        first = await service.get_fx()
        second = await service.get_fx()

        assert first.rate == second.rate == 155.0
        assert mock_client.calls_to(FX_LATEST_URL) == 1

    @pytest.mark.asyncio
    async def test_refetched_when_stale(
        self, service: MarketService, mock_client: MockMarketClient, settings: Settings
    ) -> None:
        """Test a rate older than the TTL is refetched."""
        first = await service.get_fx()
        mock_client.set_response(FX_LATEST_URL, {"rates": {"JPY": 160.0}})

        second = await service.get_fx(now_ms=first.updated_at + settings.fx_ttl_ms + 1)

        assert second.rate == 160.0
        assert mock_client.calls_to(FX_LATEST_URL) == 2

    @pytest.mark.asyncio
    async def test_fallback_keeps_real_rate(
        self, service: MarketService, mock_client: MockMarketClient, cache: KVCache
    ) -> None:
        """Test a failed refresh never replaces a real rate with the fallback."""
        await service.get_fx()
        mock_client.fail(FX_LATEST_URL)

        fx = await service.get_fx(force=True)

        assert fx.rate == 155.0
        assert fx.source == "primary"
        cached = await cache.get_model("fx:usd_jpy", FxRate)
        assert cached is not None and cached.source == "primary"

    @pytest.mark.asyncio
    async def test_fallback_when_nothing_cached(
        self, service: MarketService, mock_client: MockMarketClient
    ) -> None:
        """Test the static fallback is used on a cold start outage."""
        mock_client.fail(FX_LATEST_URL)

        fx = await service.get_fx()

        assert fx.rate == 150.0
        assert fx.source == "fallback"


class SlowPriceMapStore(MemoryStore):
    """Memory store whose first price map read stalls after reading."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self._delay = delay
        self._stalled = False

    async def get(self, key: str) -> bytes | None:
        value = await super().get(key)
        if key == "prices:v1" and not self._stalled:
            self._stalled = True
            await asyncio.sleep(self._delay)
        return value


class TestPriceMapMerge:
    """Tests for concurrent price map writers."""

    @pytest.mark.asyncio
    async def test_concurrent_scopes_keep_both(
        self, settings: Settings, mock_client: MockMarketClient
    ) -> None:
        """Test overlapping scope updates do not drop each other's entries."""
        cache = KVCache(redis_store=SlowPriceMapStore(delay=0.05))
        service = MarketService(cache, mock_client, settings)
        await service.refresh_universe()

        majors, bnb = await asyncio.gather(
            service.update_prices("majors"), service.update_prices("bnb")
        )

        prices = await service.load_prices()
        assert majors.updated > 0 and bnb.updated > 0
        assert len(prices) == majors.updated + bnb.updated
        assert await cache.get("lock:prices") is None

    @pytest.mark.asyncio
    async def test_merges_unlocked_when_lock_store_fails(
        self, settings: Settings, mock_client: MockMarketClient
    ) -> None:
        """Test a failing lock store still lets prices be written."""
        cache = KVCache(redis_store=MemoryStore())
        cache.set_if_absent = AsyncMock(side_effect=KVError("down"))  # type: ignore[method-assign]
        cache.delete = AsyncMock()  # type: ignore[method-assign]
        service = MarketService(cache, mock_client, settings)
        await service.refresh_universe()

        result = await service.update_prices("bnb")

        assert len(await service.load_prices()) == result.updated == 6
        cache.delete.assert_not_awaited()


class TestReads:
    """Tests for the read operations."""

    @pytest.mark.asyncio
    async def test_dashboard_self_seeds(self, service: MarketService) -> None:
        """Test an empty cache is seeded on first read."""
        data = await service.dashboard()

        assert data["ok"] is True
        assert data["fxRate"] == 150.0
        assert len(data["dexTradableMajorsTop10"]) == 10
        assert len(data["bnbTop15"]) == 6
        assert len(data["polygonTop15"]) == 3
        btc = data["dexTradableMajorsTop10"][0]
        assert btc["id"] == "bitcoin"
        assert btc["usdPrice"] == 0
        assert btc["jpyPrice"] == 0
        assert await service.get_universe() is not None

    @pytest.mark.asyncio
    async def test_dashboard_with_prices(self, service: MarketService) -> None:
        """Test prices and trends are attached."""
        await service.refresh_all()

        data = await service.dashboard()

        assert data["fxRate"] == 155.0
        btc = data["dexTradableMajorsTop10"][0]
        assert btc["symbol"] == "BTC"
        assert btc["usdPrice"] == 65000.0
        assert btc["jpyPrice"] == 10075000.0
        assert btc["priceChange24h"] == 2.5
        assert btc["updatedAt"] > 0

        up = [row["symbol"] for row in data["trendTop3"]["up"]]
        down = [row["symbol"] for row in data["trendTop3"]["down"]]
        assert up == ["SOL", "DOGE", "BTC"]
        assert down == ["XRP", "LINK", "ETH"]

    @pytest.mark.asyncio
    async def test_dashboard_favorites(
        self, service: MarketService, btc_token: TokenRef
    ) -> None:
        """Test favorites are returned per user with prices."""
        await service.set_favorites("alice", [btc_token])
        await service.update_prices("favorites")

        data = await service.dashboard()

        assert [row["symbol"] for row in data["favoritesByUser"]["alice"]] == ["BTC"]
        assert data["favoritesByUser"]["alice"][0]["usdPrice"] == 65000.0

    @pytest.mark.asyncio
    async def test_malformed_price_entries_dropped(
        self, service: MarketService, cache: KVCache
    ) -> None:
        """Test a corrupt price entry does not break reads."""
        good = PricePoint(jpy=1.0, usd=1.0, updated_at=1, source="coincap")
        await cache.set("prices:v1", {"BTC@MAJOR": good, "ETH@MAJOR": {"usd": "x"}})

        prices = await service.load_prices()

        assert set(prices) == {"BTC@MAJOR"}

    @pytest.mark.asyncio
    async def test_quote_symbols(self, service: MarketService) -> None:
        """Test ad-hoc quotes keyed by lowercase symbol."""
        data = await service.quote_symbols(["btc", " ETH ", "", "btc"])

        assert data == {
            "btc": {"usd": 65000.0, "usd_24h_change": 2.5},
            "eth": {"usd": 3200.0, "usd_24h_change": -1.2},
        }

    @pytest.mark.asyncio
    async def test_quote_symbols_empty(self, service: MarketService) -> None:
        """Test an empty symbol list returns an empty fallback body."""
        data = await service.quote_symbols([""])

        assert data["prices"] == {}
        assert data["source"] == "fallback"

    @pytest.mark.asyncio
    async def test_chart(self, service: MarketService, mock_client: MockMarketClient) -> None:
        """Test chart points and interval selection."""
        mock_client.set_response(
            history_url("bitcoin"), history_payload([(1000, 64000.0), (2000, 65000.0)])
        )

        data = await service.chart("BTC", 7)

        assert data == {"ok": True, "id": "bitcoin", "prices": [[1000, 64000.0], [2000, 65000.0]]}
        assert mock_client.calls[-1] == (history_url("bitcoin"), {"interval": "h1"})

    @pytest.mark.asyncio
    async def test_chart_unknown_asset(self, service: MarketService) -> None:
        """Test an asset without history yields an empty series."""
        data = await service.chart("NOPE", 1)

        assert data == {"ok": True, "id": "nope", "prices": []}

    @pytest.mark.asyncio
    async def test_chart_upstream_down(
        self, service: MarketService, mock_client: MockMarketClient
    ) -> None:
        """Test an unreachable history source is raised to the caller."""
        mock_client.fail(history_url("bitcoin"))

        with pytest.raises(ProviderError):
            await service.chart("BTC", 1)


class TestUserData:
    """Tests for favorites and agent state."""

    @pytest.mark.asyncio
    async def test_agent_state_roundtrip(self, service: MarketService) -> None:
        """Test opaque state is stored per user."""
        assert await service.get_agent_state("alice") is None

        await service.set_agent_state("alice", {"mode": "auto", "budget": 1000})

        assert await service.get_agent_state("alice") == {"mode": "auto", "budget": 1000}
        assert await service.get_agent_state("bob") is None

    @pytest.mark.asyncio
    async def test_set_favorites_seeds_universe(
        self, service: MarketService, btc_token: TokenRef
    ) -> None:
        """Test favorites can be set before any refresh."""
        universe = await service.set_favorites("alice", [btc_token])

        assert len(universe.majors_top10) == 10
        assert universe.favorites_by_user == {"alice": [btc_token]}


class TestPriceRefreshLoop:
    """Tests for PriceRefreshLoop."""

    @pytest.mark.asyncio
    async def test_run_once_reseeds(self, service: MarketService) -> None:
        """Test a missing universe is reseeded, then refreshed."""
        loop = PriceRefreshLoop(service, interval_seconds=60, scopes=["majors", "bnb"])

        first = await loop.run_once()
        second = await loop.run_once()

        assert first == {"majors": 0, "bnb": 6}
        assert second == {"majors": 10, "bnb": 6}
        assert loop.cycles == 2

    @pytest.mark.asyncio
    async def test_run_once_survives_errors(
        self, service: MarketService, cache: KVCache, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test one failing scope does not stop the cycle."""
        await service.refresh_universe()
        original = service.update_prices

        async def flaky(scope: str = "majors"):  # type: ignore[no-untyped-def]
            if scope == "majors":
                raise RuntimeError("boom")
            return await original(scope)

        monkeypatch.setattr(service, "update_prices", flaky)
        loop = PriceRefreshLoop(service, interval_seconds=60, scopes=["majors", "polygon"])

        assert await loop.run_once() == {"majors": 0, "polygon": 3}

    @pytest.mark.asyncio
    async def test_start_and_stop(self, service: MarketService) -> None:
        """Test the background task seeds the cache and stops cleanly."""
        loop = PriceRefreshLoop(service, interval_seconds=3600, scopes=["majors"])

        loop.start()
        for _ in range(50):
            if len(await service.load_prices()) == 19:
                break
            await asyncio.sleep(0.01)

        assert loop.is_running
        assert await service.get_universe() is not None
        assert len(await service.load_prices()) == 19

        await loop.stop()
        assert not loop.is_running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, service: MarketService) -> None:
        """Test stopping an idle loop is a no-op."""
        loop = PriceRefreshLoop(service, interval_seconds=60, scopes=["majors"])

        await loop.stop()

        assert not loop.is_running
