"""
Type definitions for the price service.

Records persisted in the key-value cache are pydantic models that
serialize with camelCase keys. Internal values passed between the
provider and service layers are slotted dataclasses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================


class ChainKey(str, Enum):
    """Chain grouping a token is listed under."""

    MAJOR = "MAJOR"
    BNB = "BNB"
    POLYGON = "POLYGON"


class ProviderName(str, Enum):
    """Upstream source a token is priced from."""

    COINCAP = "coincap"
    COINPAPRIKA = "coinpaprika"
    DEXSCREENER = "dexscreener"


class TradeOutcomeKind(str, Enum):
    """How a trade execution request was resolved."""

    EXECUTED = "executed"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"
    REJECTED = "rejected"
    FAILED = "failed"


# =============================================================================
# Cached Records
# =============================================================================


class CachedModel(BaseModel):
    """Base for records stored in the key-value cache."""

    model_config = {"populate_by_name": True}

    def to_json_dict(self) -> dict[str, object]:
        """Dump with camelCase keys, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TokenRef(CachedModel):
    """Reference to a tracked token and where to price it."""

    symbol: str
    name: str | None = None
    chain: ChainKey
    provider: ProviderName
    provider_id: str = Field(alias="providerId")
    contract_address: str | None = Field(default=None, alias="contractAddress")
    image: str | None = None


class PricePoint(CachedModel):
    """Cached price of one token in USD and JPY."""

    jpy: float
    usd: float
    change24h_pct: float | None = Field(default=None, alias="change24hPct")
    updated_at: int = Field(alias="updatedAt")  # ms
    source: str


class FxRate(CachedModel):
    """USD/JPY conversion rate."""

    rate: float
    updated_at: int = Field(alias="updatedAt")  # ms
    source: str = "primary"


class Universe(CachedModel):
    """The set of tracked tokens shared by every consumer."""

    majors_top10: list[TokenRef] = Field(default_factory=list, alias="majorsTop10")
    bnb_top15: list[TokenRef] = Field(default_factory=list, alias="bnbTop15")
    polygon_top15: list[TokenRef] = Field(default_factory=list, alias="polygonTop15")
    favorites_by_user: dict[str, list[TokenRef]] = Field(
        default_factory=dict, alias="favoritesByUser"
    )
    updated_at: int = Field(default=0, alias="updatedAt")


class TradeRequest(CachedModel):
    """Client request to execute a (simulated) trade."""

    idempotency_key: str | None = Field(default=None, alias="idempotencyKey")
    pair: str = ""
    action: str | None = None
    amount: float | None = None
    price: float | None = None


class TradeResult(CachedModel):
    """Result replayed for repeated requests with the same idempotency key."""

    ok: bool = True
    tx_hash: str = Field(alias="txHash")
    message: str


# =============================================================================
# Internal Values
# =============================================================================


@dataclass(slots=True, frozen=True)
class Quote:
    """Raw USD quote returned by a provider batch fetch."""

    usd: float
    change24h_pct: float | None = None


@dataclass(slots=True)
class TradeOutcome:
    """Resolution of a trade execution request."""

    kind: TradeOutcomeKind
    result: TradeResult | None = None
    error_message: str = ""

    @property
    def is_success(self) -> bool:
        """Executed now or replayed from the idempotency cache."""
        return self.kind in (TradeOutcomeKind.EXECUTED, TradeOutcomeKind.DUPLICATE)


@dataclass(slots=True)
class PriceUpdateResult:
    """Summary of a scoped price update."""

    scope: str
    updated: int
    fx_rate: float | None = None
    at: int = 0
    unresolved: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Response body for the update endpoint."""
        body: dict[str, object] = {"ok": True, "scope": self.scope, "updated": self.updated}
        if self.fx_rate is not None:
            body["fxRate"] = self.fx_rate
            body["at"] = self.at
        return body


# =============================================================================
# Protocols (Interfaces)
# =============================================================================


class JsonClient(Protocol):
    """Protocol for clients that fetch JSON documents over HTTP."""

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """Fetch and decode a JSON document."""
        ...
