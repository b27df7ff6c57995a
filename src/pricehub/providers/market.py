"""
Market data fetchers.

Batch price lookup (CoinCap with a CoinPaprika fallback), USD/JPY FX
rate with a static fallback, and CoinCap price history. Every fetcher
logs and absorbs upstream failures so callers always receive a
(possibly partial) result.
"""

import logging
from collections import defaultdict
from typing import Any, Final

from pydantic import ValidationError

from pricehub.config.constants import (
    CHART_INTERVAL_1D,
    CHART_INTERVAL_1H,
    CHART_INTERVAL_6H,
    CHART_INTERVAL_15M,
    COINCAP_ASSET_LIMIT,
    COINCAP_REST_URL,
    COINPAPRIKA_REST_URL,
    DEFAULT_FX_FALLBACK_RATE,
    ENDPOINT_COINCAP_ASSETS,
    ENDPOINT_COINCAP_HISTORY,
    ENDPOINT_FX_LATEST,
    ENDPOINT_PAPRIKA_TICKERS,
    EXCHANGERATE_REST_URL,
    FX_SOURCE_FALLBACK,
    FX_SOURCE_PRIMARY,
    JPY_PRECISION,
    MIN_VALID_USD_JPY,
)
from pricehub.core.types import FxRate, JsonClient, ProviderName, Quote, TokenRef
from pricehub.providers.client import ProviderError
from pricehub.providers.models import (
    CoinCapAsset,
    CoinCapHistoryPoint,
    FxLatestResponse,
    PaprikaTicker,
)
from pricehub.utils.time import get_timestamp_ms


logger = logging.getLogger(__name__)


# Dashboard symbols -> CoinCap asset ids
SYMBOL_TO_COINCAP_ID: Final[dict[str, str]] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "BNB": "binance-coin",
    "POL": "polygon",
    "MATIC": "polygon",
    "XRP": "xrp",
    "DOGE": "dogecoin",
    "ADA": "cardano",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "AVAX": "avalanche",
    "TRX": "tron",
    "USDT": "tether",
    "USDC": "usd-coin",
    "WBTC": "wrapped-bitcoin",
}


def price_key(token: TokenRef) -> str:
    """Key of a token's entry in the cached price map."""
    return f"{token.symbol.upper()}@{token.chain.value}"


def to_jpy(usd: float, usd_jpy: float) -> float:
    """Convert a USD amount to JPY, rounded to sen."""
    return round(usd * usd_jpy, JPY_PRECISION)


def coincap_id_for_symbol(symbol: str) -> str:
    """Resolve a ticker symbol to a CoinCap asset id."""
    return SYMBOL_TO_COINCAP_ID.get(symbol.upper(), symbol.lower())


def interval_for_days(days: int) -> str:
    """
    Pick a CoinCap history interval for a chart span.

    Examples:
        >>> interval_for_days(1)
        'm15'
        >>> interval_for_days(90)
        'd1'
    """
    if days <= 1:
        return CHART_INTERVAL_15M
    if days <= 7:
        return CHART_INTERVAL_1H
    if days <= 30:
        return CHART_INTERVAL_6H
    return CHART_INTERVAL_1D


# =============================================================================
# FX
# =============================================================================


async def fetch_usd_jpy(
    client: JsonClient,
    fallback_rate: float = DEFAULT_FX_FALLBACK_RATE,
) -> FxRate:
    """
    Fetch the USD/JPY rate.

    Args:
        client: JSON client.
        fallback_rate: Static rate used when the source fails.

    Returns:
        Fresh rate, or the fallback tagged with source "fallback".
    """
    try:
        payload = await client.get_json(
            f"{EXCHANGERATE_REST_URL}{ENDPOINT_FX_LATEST}",
            params={"base": "USD", "symbols": "JPY"},
        )
        rate = FxLatestResponse.model_validate(payload).rate_for("JPY")
        if rate is None or rate < MIN_VALID_USD_JPY:
            raise ProviderError(f"Invalid USD/JPY rate from primary FX source: {rate}")
        return FxRate(rate=rate, updated_at=get_timestamp_ms(), source=FX_SOURCE_PRIMARY)

    except (ProviderError, ValidationError) as e:
        logger.warning("FX primary fetch failed, using fallback %.2f: %s", fallback_rate, e)
        return FxRate(
            rate=fallback_rate,
            updated_at=get_timestamp_ms(),
            source=FX_SOURCE_FALLBACK,
        )


# =============================================================================
# Prices
# =============================================================================


def _items(payload: Any, key: str | None = None) -> list[Any]:
    """Extract a list from a payload, tolerating unexpected shapes."""
    if key is not None:
        payload = payload.get(key) if isinstance(payload, dict) else None
    return payload if isinstance(payload, list) else []


async def _fetch_coincap(client: JsonClient, tokens: list[TokenRef]) -> dict[str, Quote]:
    """Price CoinCap tokens by asset id."""
    out: dict[str, Quote] = {}
    need = {t.provider_id for t in tokens}

    try:
        payload = await client.get_json(
            f"{COINCAP_REST_URL}{ENDPOINT_COINCAP_ASSETS}",
            params={"limit": COINCAP_ASSET_LIMIT},
        )
    except ProviderError as e:
        logger.error("CoinCap batch fetch failed: %s", e)
        return out

    for item in _items(payload, "data"):
        try:
            asset = CoinCapAsset.model_validate(item)
        except ValidationError:
            continue
        if asset.id not in need:
            continue
        usd = asset.usd
        if usd is None:
            continue
        out[asset.id] = Quote(usd=usd, change24h_pct=asset.change_24h)

    return out


async def _fetch_paprika(
    client: JsonClient,
    by_symbol_tokens: list[TokenRef],
    by_id_tokens: list[TokenRef],
) -> dict[str, Quote]:
    """
    Price tokens from CoinPaprika tickers.

    Tokens from other providers are matched by symbol (first, i.e.
    highest-ranked, ticker wins); CoinPaprika tokens by ticker id.
    """
    out: dict[str, Quote] = {}

    try:
        payload = await client.get_json(f"{COINPAPRIKA_REST_URL}{ENDPOINT_PAPRIKA_TICKERS}")
    except ProviderError as e:
        logger.error("CoinPaprika fetch failed: %s", e)
        return out

    by_symbol: dict[str, PaprikaTicker] = {}
    by_id: dict[str, PaprikaTicker] = {}
    for item in _items(payload):
        try:
            ticker = PaprikaTicker.model_validate(item)
        except ValidationError:
            continue
        symbol = ticker.symbol.upper()
        if symbol and symbol not in by_symbol:
            by_symbol[symbol] = ticker
        by_id[ticker.id] = ticker

    matches = [(t, by_symbol.get(t.symbol.upper())) for t in by_symbol_tokens]
    matches += [(t, by_id.get(t.provider_id)) for t in by_id_tokens]

    for token, ticker in matches:
        if ticker is None:
            continue
        usd = ticker.usd
        if usd is None:
            continue
        out[token.provider_id] = Quote(usd=usd, change24h_pct=ticker.change_24h)

    return out


async def fetch_prices_batch(client: JsonClient, tokens: list[TokenRef]) -> dict[str, Quote]:
    """
    Fetch USD quotes for a list of tokens.

    CoinCap tokens are priced with a single asset listing call; those it
    cannot price fall back to CoinPaprika by symbol.

    Args:
        client: JSON client.
        tokens: Tokens to price.

    Returns:
        Mapping of provider id to quote. Unpriced tokens are absent.
    """
    by_provider: dict[ProviderName, list[TokenRef]] = defaultdict(list)
    for token in tokens:
        by_provider[token.provider].append(token)

    out: dict[str, Quote] = {}

    coincap_tokens = by_provider.get(ProviderName.COINCAP, [])
    if coincap_tokens:
        out.update(await _fetch_coincap(client, coincap_tokens))

    unresolved = [t for t in coincap_tokens if t.provider_id not in out]
    paprika_tokens = by_provider.get(ProviderName.COINPAPRIKA, [])
    if unresolved or paprika_tokens:
        if unresolved:
            logger.info("Falling back to CoinPaprika for %d token(s)", len(unresolved))
        out.update(await _fetch_paprika(client, unresolved, paprika_tokens))

    dex_tokens = by_provider.get(ProviderName.DEXSCREENER, [])
    if dex_tokens:
        logger.debug("Skipping %d dexscreener token(s): no batch source", len(dex_tokens))

    return out


# =============================================================================
# History
# =============================================================================


async def load_history(
    client: JsonClient,
    provider_id: str,
    interval: str = CHART_INTERVAL_1D,
) -> list[CoinCapHistoryPoint]:
    """
    Load CoinCap price history for an asset.

    An unknown asset (HTTP 404) has no history.

    Raises:
        ProviderError: If CoinCap is unreachable or fails otherwise.
    """
    endpoint = ENDPOINT_COINCAP_HISTORY.format(asset_id=provider_id)
    try:
        payload = await client.get_json(
            f"{COINCAP_REST_URL}{endpoint}",
            params={"interval": interval},
        )
    except ProviderError as e:
        if e.status == 404:
            logger.info("No CoinCap history for %s", provider_id)
            return []
        raise

    points: list[CoinCapHistoryPoint] = []
    for item in _items(payload, "data"):
        try:
            points.append(CoinCapHistoryPoint.model_validate(item))
        except ValidationError:
            continue
    return points


async def fetch_history(
    client: JsonClient,
    provider_id: str,
    interval: str = CHART_INTERVAL_1D,
) -> list[CoinCapHistoryPoint]:
    """
    Fetch CoinCap price history for an asset.

    Returns:
        History points, or an empty list on failure.
    """
    try:
        return await load_history(client, provider_id, interval)
    except ProviderError as e:
        logger.error("CoinCap history fetch failed for %s: %s", provider_id, e)
        return []
