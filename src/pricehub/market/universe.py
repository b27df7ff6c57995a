"""
Tracked token universe.

The chain lists are static; ranking calls are deliberately avoided so a
refresh never depends on an upstream being reachable. Favorites are
per-user and survive every rebuild.
"""

from typing import Final

from pricehub.core.types import ChainKey, ProviderName, TokenRef, Universe
from pricehub.providers.market import price_key
from pricehub.utils.time import get_timestamp_ms


_ICON_URL = "https://assets.coincap.io/assets/icons/{symbol}@2x.png"


def _coincap(
    symbol: str,
    name: str,
    chain: ChainKey,
    provider_id: str,
    with_icon: bool = False,
) -> TokenRef:
    return TokenRef(
        symbol=symbol,
        name=name,
        chain=chain,
        provider=ProviderName.COINCAP,
        provider_id=provider_id,
        image=_ICON_URL.format(symbol=symbol.lower()) if with_icon else None,
    )


STATIC_MAJORS: Final[tuple[TokenRef, ...]] = (
    _coincap("BTC", "Bitcoin", ChainKey.MAJOR, "bitcoin", with_icon=True),
    _coincap("ETH", "Ethereum", ChainKey.MAJOR, "ethereum", with_icon=True),
    _coincap("SOL", "Solana", ChainKey.MAJOR, "solana", with_icon=True),
    _coincap("BNB", "BNB", ChainKey.MAJOR, "binance-coin", with_icon=True),
    _coincap("XRP", "XRP", ChainKey.MAJOR, "xrp", with_icon=True),
    _coincap("ADA", "Cardano", ChainKey.MAJOR, "cardano"),
    _coincap("AVAX", "Avalanche", ChainKey.MAJOR, "avalanche"),
    _coincap("DOGE", "Dogecoin", ChainKey.MAJOR, "dogecoin"),
    _coincap("TRX", "TRON", ChainKey.MAJOR, "tron"),
    _coincap("LINK", "Chainlink", ChainKey.MAJOR, "chainlink"),
)

STATIC_BNB: Final[tuple[TokenRef, ...]] = (
    _coincap("CAKE", "PancakeSwap", ChainKey.BNB, "pancakeswap"),
    _coincap("SHIB", "Shiba Inu", ChainKey.BNB, "shiba-inu"),
    _coincap("XVS", "Venus", ChainKey.BNB, "venus"),
    _coincap("ALPACA", "Alpaca Finance", ChainKey.BNB, "alpaca-finance"),
    _coincap("ASTR", "AstarNetwork", ChainKey.BNB, "astar"),
    _coincap("TWT", "Trust Wallet Token", ChainKey.BNB, "trust-wallet-token"),
)

STATIC_POLYGON: Final[tuple[TokenRef, ...]] = (
    _coincap("POL", "Polygon Ecosystem Token", ChainKey.POLYGON, "polygon"),
    _coincap("QUICK", "QuickSwap", ChainKey.POLYGON, "quickswap"),
    _coincap("WPOL", "Wrapped POL", ChainKey.POLYGON, "wrapped-matic"),
)


def build_universe(existing: Universe | None = None, now_ms: int | None = None) -> Universe:
    """
    Build a fresh universe from the static lists.

    Args:
        existing: Previously cached universe whose favorites are kept.
        now_ms: Timestamp to stamp (defaults to now).

    Returns:
        New universe.
    """
    return Universe(
        majors_top10=list(STATIC_MAJORS),
        bnb_top15=list(STATIC_BNB),
        polygon_top15=list(STATIC_POLYGON),
        favorites_by_user=dict(existing.favorites_by_user) if existing else {},
        updated_at=get_timestamp_ms() if now_ms is None else now_ms,
    )


def _dedupe(tokens: list[TokenRef]) -> list[TokenRef]:
    """Drop tokens whose price key was already seen, keeping order."""
    seen: set[str] = set()
    out: list[TokenRef] = []
    for token in tokens:
        key = price_key(token)
        if key in seen:
            continue
        seen.add(key)
        out.append(token)
    return out


def favorite_tokens(universe: Universe) -> list[TokenRef]:
    """All users' favorites, flattened in user order."""
    return [t for tokens in universe.favorites_by_user.values() for t in tokens]


def pick_tokens_by_scope(universe: Universe, scope: str) -> list[TokenRef]:
    """
    Select the tokens a scoped refresh covers.

    Args:
        universe: Cached universe.
        scope: "majors", "bnb", "polygon", "favorites" or "all".

    Returns:
        Tokens in scope; empty for an unknown scope.
    """
    if scope == "majors":
        return list(universe.majors_top10)
    if scope == "bnb":
        return list(universe.bnb_top15)
    if scope == "polygon":
        return list(universe.polygon_top15)
    if scope == "favorites":
        return favorite_tokens(universe)
    if scope == "all":
        return _dedupe(
            universe.majors_top10
            + universe.bnb_top15
            + universe.polygon_top15
            + favorite_tokens(universe)
        )
    return []


def set_favorites(universe: Universe, user_id: str, tokens: list[TokenRef]) -> Universe:
    """
    Replace a user's favorites.

    An empty list removes the user. Duplicate price keys are dropped.

    Returns:
        Updated copy of the universe.
    """
    favorites = dict(universe.favorites_by_user)
    if tokens:
        favorites[user_id] = _dedupe(tokens)
    else:
        favorites.pop(user_id, None)
    return universe.model_copy(update={"favorites_by_user": favorites})
