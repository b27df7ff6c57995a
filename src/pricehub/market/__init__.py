"""Market universe and refresh service."""

from pricehub.market.service import MarketService, PriceRefreshLoop, UniverseNotReadyError
from pricehub.market.universe import build_universe, pick_tokens_by_scope, set_favorites


__all__ = [
    "MarketService",
    "PriceRefreshLoop",
    "UniverseNotReadyError",
    "build_universe",
    "pick_tokens_by_scope",
    "set_favorites",
]
