"""Core module containing the record and value types."""

from pricehub.core.types import (
    ChainKey,
    FxRate,
    JsonClient,
    PricePoint,
    PriceUpdateResult,
    ProviderName,
    Quote,
    TokenRef,
    TradeOutcome,
    TradeOutcomeKind,
    TradeRequest,
    TradeResult,
    Universe,
)


__all__ = [
    "ChainKey",
    "FxRate",
    "JsonClient",
    "PricePoint",
    "PriceUpdateResult",
    "ProviderName",
    "Quote",
    "TokenRef",
    "TradeOutcome",
    "TradeOutcomeKind",
    "TradeRequest",
    "TradeResult",
    "Universe",
]
