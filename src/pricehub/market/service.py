"""
Market refresh and read service.

Populates the shared cache (universe, merged price map, USD/JPY rate)
and serves the dashboard read paths from it. A background loop can
keep prices fresh without an external cron.
"""

import asyncio
import logging
from typing import Any

from pricehub.config.constants import (
    DEFAULT_CHART_DAYS,
    FX_SOURCE_FALLBACK,
    FX_SOURCE_PRIMARY,
    KEY_AGENT_STATE_PREFIX,
    KEY_FX_USD_JPY,
    KEY_PRICES,
    KEY_PRICES_LOCK,
    KEY_UNIVERSE,
    PRICES_LOCK_POLL_SECONDS,
    PRICES_LOCK_TTL_SECONDS,
    TREND_TOP_N,
)
from pricehub.config.settings import Settings
from pricehub.core.types import (
    ChainKey,
    FxRate,
    JsonClient,
    PricePoint,
    PriceUpdateResult,
    ProviderName,
    Quote,
    TokenRef,
    Universe,
)
from pricehub.market import universe as universe_ops
from pricehub.providers.market import (
    coincap_id_for_symbol,
    fetch_prices_batch,
    fetch_usd_jpy,
    interval_for_days,
    load_history,
    price_key,
    to_jpy,
)
from pricehub.storage.kv import KVCache, KVError
from pricehub.telemetry.metrics import MetricsCollector
from pricehub.utils.time import get_timestamp_ms, is_older_than


logger = logging.getLogger(__name__)


class UniverseNotReadyError(Exception):
    """Raised when a read or refresh needs a universe that is not cached."""

    pass


class MarketService:
    """
    Refreshes and reads the cached market state.

    All state lives in the KV cache, so any number of service
    instances can share it when the cache is backed by Redis.
    """

    def __init__(
        self,
        cache: KVCache,
        client: JsonClient,
        settings: Settings,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            cache: Shared key-value cache.
            client: JSON client for upstream providers.
            settings: Application settings.
            metrics: Optional metrics collector.
        """
        self._cache = cache
        self._client = client
        self._settings = settings
        self._metrics = metrics

    def _count(self, name: str, value: int = 1) -> None:
        if self._metrics is not None:
            self._metrics.increment_counter(name, value)

    # =========================================================================
    # Cache Access
    # =========================================================================

    async def get_universe(self) -> Universe | None:
        """Get the cached universe."""
        return await self._cache.get_model(KEY_UNIVERSE, Universe)

    async def load_prices(self) -> dict[str, PricePoint]:
        """Get the cached price map, dropping malformed entries."""
        raw = await self._cache.get(KEY_PRICES)
        if not isinstance(raw, dict):
            return {}

        prices: dict[str, PricePoint] = {}
        for key, value in raw.items():
            try:
                prices[key] = PricePoint.model_validate(value)
            except ValueError:
                logger.warning("Dropping malformed price entry %s", key)
        return prices

    async def _store_prices(self, prices: dict[str, PricePoint]) -> None:
        await self._cache.set(KEY_PRICES, {k: v.to_json_dict() for k, v in prices.items()})

    async def _lock_prices(self) -> bool:
        """
        Claim the price map lock, waiting out other writers.

        Returns:
            False if the store cannot hold locks right now.

        Raises:
            KVError: If another writer kept the lock past its expiry.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + PRICES_LOCK_TTL_SECONDS
        while True:
            try:
                if await self._cache.set_if_absent(KEY_PRICES_LOCK, "1", PRICES_LOCK_TTL_SECONDS):
                    return True
            except KVError as e:
                logger.warning("Price map lock unavailable, merging unlocked: %s", e)
                return False
            if loop.time() >= deadline:
                raise KVError("Timed out waiting for the price map lock")
            await asyncio.sleep(PRICES_LOCK_POLL_SECONDS)

    async def merge_prices(self, fresh: dict[str, PricePoint]) -> None:
        """
        Merge price points into the cached map.

        The read-merge-write runs under a short lock so concurrent
        refreshes keep each other's entries.
        """
        locked = await self._lock_prices()
        try:
            prices = await self.load_prices()
            prices.update(fresh)
            await self._store_prices(prices)
        finally:
            if locked:
                try:
                    await self._cache.delete(KEY_PRICES_LOCK)
                except KVError as e:
                    logger.error("Failed to release price map lock: %s", e)

    @staticmethod
    def _price_points(
        tokens: list[TokenRef],
        batch: dict[str, Quote],
        usd_jpy: float,
        now_ms: int,
    ) -> dict[str, PricePoint]:
        """Convert batch quotes into price points keyed by price key."""
        points: dict[str, PricePoint] = {}
        for token in tokens:
            quote = batch.get(token.provider_id)
            if quote is None or not quote.usd:
                continue
            points[price_key(token)] = PricePoint(
                jpy=to_jpy(quote.usd, usd_jpy),
                usd=quote.usd,
                change24h_pct=quote.change24h_pct,
                updated_at=now_ms,
                source=token.provider.value,
            )
        return points

    # =========================================================================
    # FX
    # =========================================================================

    async def get_fx(self, now_ms: int | None = None, force: bool = False) -> FxRate:
        """
        Get the USD/JPY rate, refetching once the cached one is stale.

        A fallback rate never replaces a cached rate from the real source.

        Args:
            now_ms: Reference time (defaults to now).
            force: Refetch even if the cached rate is fresh.

        Returns:
            Rate to convert with.
        """
        now = get_timestamp_ms() if now_ms is None else now_ms
        cached = await self._cache.get_model(KEY_FX_USD_JPY, FxRate)
        if (
            cached is not None
            and not force
            and not is_older_than(cached.updated_at, self._settings.fx_ttl_ms, now)
        ):
            return cached

        fresh = await fetch_usd_jpy(self._client, self._settings.fx_fallback_rate)
        if (
            fresh.source == FX_SOURCE_FALLBACK
            and cached is not None
            and cached.source == FX_SOURCE_PRIMARY
        ):
            logger.warning("FX refresh failed, keeping cached rate %.4f", cached.rate)
            self._count("fx.stale_served")
            return cached

        await self._cache.set(KEY_FX_USD_JPY, fresh)
        self._count("fx.refreshed")
        logger.info("FX usd_jpy saved: %.4f (%s)", fresh.rate, fresh.source)
        return fresh

    # =========================================================================
    # Refresh Operations
    # =========================================================================

    async def refresh_universe(self) -> dict[str, int]:
        """
        Rebuild and store the universe, keeping user favorites.

        Returns:
            Token counts per list.
        """
        universe = universe_ops.build_universe(await self.get_universe())
        await self._cache.set(KEY_UNIVERSE, universe)
        logger.info("Universe saved (%d majors)", len(universe.majors_top10))

        return {
            "majors": len(universe.majors_top10),
            "bnb": len(universe.bnb_top15),
            "polygon": len(universe.polygon_top15),
        }

    async def refresh_all(self) -> list[str]:
        """
        Seed every cache key: universe, prices and FX.

        Returns:
            Keys written.
        """
        universe = universe_ops.build_universe(await self.get_universe())
        await self._cache.set(KEY_UNIVERSE, universe)
        keys = [KEY_UNIVERSE]
        logger.info("Universe saved")

        now = get_timestamp_ms()
        fx = await self.get_fx(now, force=True)

        tokens = universe_ops.pick_tokens_by_scope(universe, "all")
        batch = await fetch_prices_batch(self._client, tokens)
        fresh = self._price_points(tokens, batch, fx.rate, now)
        if fresh:
            await self.merge_prices(fresh)
            keys.append(KEY_PRICES)
            logger.info("Prices saved (%d/%d tokens)", len(fresh), len(tokens))
        else:
            logger.warning("No prices resolved for %d tokens, keeping cached map", len(tokens))

        keys.append(KEY_FX_USD_JPY)
        self._count("refresh.all")
        return keys

    async def update_prices(self, scope: str = "majors") -> PriceUpdateResult:
        """
        Refresh the prices of one universe scope.

        Entries outside the scope are kept as they are.

        Args:
            scope: Universe scope to refresh.

        Returns:
            Update summary.

        Raises:
            UniverseNotReadyError: If no universe is cached.
        """
        universe = await self.get_universe()
        if universe is None:
            raise UniverseNotReadyError("Universe not ready")

        now = get_timestamp_ms()
        fx = await self.get_fx(now)

        tokens = universe_ops.pick_tokens_by_scope(universe, scope)
        if not tokens:
            return PriceUpdateResult(scope=scope, updated=0)

        batch = await fetch_prices_batch(self._client, tokens)
        fresh = self._price_points(tokens, batch, fx.rate, now)

        await self.merge_prices(fresh)

        unresolved = [t.provider_id for t in tokens if price_key(t) not in fresh]
        if unresolved:
            logger.warning("Scope %s: no price for %s", scope, ", ".join(unresolved))

        self._count("prices.updated", len(fresh))
        return PriceUpdateResult(
            scope=scope,
            updated=len(fresh),
            fx_rate=fx.rate,
            at=now,
            unresolved=unresolved,
        )

    # =========================================================================
    # Read Operations
    # =========================================================================

    @staticmethod
    def _attach_prices(
        tokens: list[TokenRef],
        prices: dict[str, PricePoint],
    ) -> list[dict[str, Any]]:
        rows = []
        for token in tokens:
            point = prices.get(price_key(token))
            row: dict[str, Any] = token.to_json_dict()
            row.update(
                {
                    "id": token.provider_id,
                    "usdPrice": point.usd if point else 0,
                    "jpyPrice": point.jpy if point else 0,
                    "priceChange24h": (point.change24h_pct or 0) if point else 0,
                    "updatedAt": point.updated_at if point else 0,
                }
            )
            rows.append(row)
        return rows

    async def dashboard(self) -> dict[str, Any]:
        """
        Build the dashboard snapshot from the cache.

        Seeds the universe first when it is missing.

        Raises:
            UniverseNotReadyError: If the universe still cannot be read.
        """
        universe = await self.get_universe()
        if universe is None:
            logger.info("Universe empty, seeding...")
            await self.refresh_universe()
            universe = await self.get_universe()

        if universe is None:
            raise UniverseNotReadyError(
                "Universe not ready. Initializing, please refresh in a moment."
            )

        prices = await self.load_prices()
        fx = await self._cache.get_model(KEY_FX_USD_JPY, FxRate)

        majors = self._attach_prices(universe.majors_top10, prices)
        movers = sorted(majors, key=lambda row: row["priceChange24h"], reverse=True)

        return {
            "ok": True,
            "updatedAt": get_timestamp_ms(),
            "fxRate": fx.rate if fx else self._settings.fx_fallback_rate,
            "trendTop3": {
                "up": movers[:TREND_TOP_N],
                "down": movers[::-1][:TREND_TOP_N],
            },
            "dexTradableMajorsTop10": majors,
            "bnbTop15": self._attach_prices(universe.bnb_top15, prices),
            "polygonTop15": self._attach_prices(universe.polygon_top15, prices),
            "favoritesByUser": {
                user_id: self._attach_prices(tokens, prices)
                for user_id, tokens in universe.favorites_by_user.items()
            },
        }

    async def quote_symbols(self, ids: list[str]) -> dict[str, Any]:
        """
        Fetch fresh USD quotes for ticker symbols, bypassing the cache.

        Args:
            ids: Symbols such as "btc" or "ETH".

        Returns:
            Quotes keyed by lowercase symbol.
        """
        symbols = list(dict.fromkeys(i.strip().upper() for i in ids if i.strip()))
        if not symbols:
            return {"prices": {}, "updatedAt": get_timestamp_ms(), "source": "fallback"}

        tokens = [
            TokenRef(
                symbol=symbol,
                chain=ChainKey.MAJOR,
                provider=ProviderName.COINCAP,
                provider_id=coincap_id_for_symbol(symbol),
            )
            for symbol in symbols
        ]
        batch = await fetch_prices_batch(self._client, tokens)

        out: dict[str, Any] = {}
        for token in tokens:
            quote = batch.get(token.provider_id)
            if quote is not None:
                out[token.symbol.lower()] = {
                    "usd": quote.usd,
                    "usd_24h_change": quote.change24h_pct,
                }
        return out

    async def chart(self, symbol: str, days: int = DEFAULT_CHART_DAYS) -> dict[str, Any]:
        """
        Price history for a symbol as [time_ms, price] pairs.

        Args:
            symbol: Ticker symbol or CoinCap id.
            days: Span of the chart.

        Raises:
            ProviderError: If the history source is unavailable.
        """
        provider_id = coincap_id_for_symbol(symbol)
        points = await load_history(self._client, provider_id, interval_for_days(days))
        return {
            "ok": True,
            "id": provider_id,
            "prices": [[p.time, p.price] for p in points if p.price is not None],
        }

    # =========================================================================
    # User Data
    # =========================================================================

    async def set_favorites(self, user_id: str, tokens: list[TokenRef]) -> Universe:
        """
        Replace a user's favorite tokens in the universe.

        Returns:
            Updated universe.
        """
        universe = await self.get_universe() or universe_ops.build_universe()
        updated = universe_ops.set_favorites(universe, user_id, tokens)
        await self._cache.set(KEY_UNIVERSE, updated)
        logger.info("Favorites for %s saved (%d tokens)", user_id, len(tokens))
        return updated

    async def get_agent_state(self, user_id: str) -> Any | None:
        """Get a user's stored agent state blob."""
        return await self._cache.get(f"{KEY_AGENT_STATE_PREFIX}{user_id}")

    async def set_agent_state(self, user_id: str, state: Any) -> None:
        """Store a user's agent state blob."""
        await self._cache.set(f"{KEY_AGENT_STATE_PREFIX}{user_id}", state)


class PriceRefreshLoop:
    """
    Periodic in-process price refresh.

    Seeds the cache once, then refreshes the configured scopes at a
    fixed interval until stopped.
    """

    def __init__(
        self,
        service: MarketService,
        interval_seconds: float,
        scopes: list[str],
    ) -> None:
        """
        Initialize the loop.

        Args:
            service: Market service to drive.
            interval_seconds: Delay between refresh cycles.
            scopes: Universe scopes refreshed each cycle.
        """
        self._service = service
        self._interval = interval_seconds
        self._scopes = scopes
        self._task: asyncio.Task[None] | None = None
        self._cycles = 0

    async def seed(self) -> None:
        """Populate every cache key."""
        try:
            keys = await self._service.refresh_all()
            logger.info("Cache seeded: %s", ", ".join(keys))
        except Exception as e:
            logger.error("Cache seed failed: %s", e)

    async def run_once(self) -> dict[str, int]:
        """
        Run one refresh cycle.

        Returns:
            Updated count per scope.
        """
        results: dict[str, int] = {}
        for scope in self._scopes:
            try:
                result = await self._service.update_prices(scope)
                results[scope] = result.updated
            except UniverseNotReadyError:
                logger.warning("Universe missing during refresh, reseeding")
                await self.seed()
                results[scope] = 0
            except Exception as e:
                logger.error("Price refresh for %s failed: %s", scope, e)
                results[scope] = 0
        self._cycles += 1
        return results

    async def run(self) -> None:
        """Seed, then refresh until cancelled."""
        logger.info("Price refresh loop started (every %.0fs)", self._interval)
        await self.seed()
        while True:
            await asyncio.sleep(self._interval)
            results = await self.run_once()
            logger.debug("Refresh cycle %d: %s", self._cycles, results)

    def start(self) -> asyncio.Task[None]:
        """Start the loop as a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="price-refresh")
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Price refresh loop stopped")

    @property
    def is_running(self) -> bool:
        """Whether the background task is alive."""
        return self._task is not None and not self._task.done()

    @property
    def cycles(self) -> int:
        """Completed refresh cycles."""
        return self._cycles
