"""Configuration module for the price service."""

from pricehub.config.constants import (
    COINCAP_REST_URL,
    COINPAPRIKA_REST_URL,
    DEFAULT_FX_FALLBACK_RATE,
    DEFAULT_FX_TTL_SECONDS,
    EXCHANGERATE_REST_URL,
)
from pricehub.config.settings import Settings, get_settings


__all__ = [
    "Settings",
    "get_settings",
    "COINCAP_REST_URL",
    "COINPAPRIKA_REST_URL",
    "EXCHANGERATE_REST_URL",
    "DEFAULT_FX_FALLBACK_RATE",
    "DEFAULT_FX_TTL_SECONDS",
]
