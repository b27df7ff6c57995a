"""
Pydantic models for upstream provider responses.

These models provide type-safe parsing of provider payloads. Numeric
fields arrive as strings (CoinCap) or numbers (CoinPaprika); the
helpers below turn both into floats and reject non-finite values.
"""

import math

from pydantic import BaseModel, Field


def parse_number(value: object) -> float | None:
    """Convert a provider number or numeric string to a finite float."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class CoinCapAsset(BaseModel):
    """Single asset from CoinCap /v2/assets."""

    id: str
    symbol: str = ""
    price_usd: str | None = Field(default=None, alias="priceUsd")
    change_percent_24h: str | None = Field(default=None, alias="changePercent24Hr")

    model_config = {"populate_by_name": True}

    @property
    def usd(self) -> float | None:
        """USD price, or None if missing or not positive."""
        price = parse_number(self.price_usd)
        return price if price and price > 0 else None

    @property
    def change_24h(self) -> float | None:
        """24h change in percent."""
        return parse_number(self.change_percent_24h)


class CoinCapHistoryPoint(BaseModel):
    """Single point from CoinCap /v2/assets/{id}/history."""

    price_usd: str = Field(alias="priceUsd")
    time: int

    model_config = {"populate_by_name": True}

    @property
    def price(self) -> float | None:
        """Price as float."""
        return parse_number(self.price_usd)


class PaprikaQuote(BaseModel):
    """Quote block of a CoinPaprika ticker."""

    price: float | None = None
    percent_change_24h: float | None = None


class PaprikaTicker(BaseModel):
    """Single ticker from CoinPaprika /v1/tickers."""

    id: str
    symbol: str = ""
    quotes: dict[str, PaprikaQuote] = Field(default_factory=dict)

    @property
    def usd_quote(self) -> PaprikaQuote | None:
        """USD quote block if present."""
        return self.quotes.get("USD")

    @property
    def usd(self) -> float | None:
        """USD price, or None if missing or not positive."""
        quote = self.usd_quote
        price = parse_number(quote.price) if quote else None
        return price if price and price > 0 else None

    @property
    def change_24h(self) -> float:
        """24h change in percent (0 when absent)."""
        quote = self.usd_quote
        change = parse_number(quote.percent_change_24h) if quote else None
        return change if change is not None else 0.0


class FxLatestResponse(BaseModel):
    """Response of exchangerate.host /latest."""

    base: str | None = None
    rates: dict[str, float | None] = Field(default_factory=dict)

    def rate_for(self, currency: str) -> float | None:
        """Rate for a quote currency."""
        return parse_number(self.rates.get(currency))
