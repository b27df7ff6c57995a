"""
Application settings with environment variable support.

Uses Pydantic Settings for type-safe configuration with automatic
environment variable loading and validation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pricehub.config.constants import (
    DEFAULT_FX_FALLBACK_RATE,
    DEFAULT_FX_TTL_SECONDS,
    DEFAULT_IDEMPOTENCY_TTL_SECONDS,
    DEFAULT_PROVIDER_REQUESTS_PER_MINUTE,
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    DEFAULT_TRADE_LOCK_TTL_SECONDS,
    MIN_VALID_USD_JPY,
)


VALID_SCOPES = frozenset({"majors", "bnb", "polygon", "favorites", "all"})


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Sensitive values use SecretStr for safe handling.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # =========================================================================
    # Key-Value Store
    # =========================================================================

    redis_url: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("redis_url", "kv_url"),
        description="Redis connection URL; in-process memory store when unset",
    )

    allow_local_trade_lock: bool = Field(
        default=False,
        description="Allow trade execution when the lock lives in process memory",
    )

    # =========================================================================
    # FX Configuration
    # =========================================================================

    fx_fallback_rate: float = Field(
        default=DEFAULT_FX_FALLBACK_RATE,
        gt=MIN_VALID_USD_JPY,
        description="USD/JPY rate used when the FX source is unavailable",
    )

    fx_ttl_seconds: int = Field(
        default=DEFAULT_FX_TTL_SECONDS,
        ge=1,
        le=86400,
        description="Age after which a cached FX rate is refetched",
    )

    # =========================================================================
    # Trade Execution
    # =========================================================================

    trade_lock_ttl_seconds: int = Field(
        default=DEFAULT_TRADE_LOCK_TTL_SECONDS,
        ge=1,
        le=600,
        description="Expiry of the per-pair trade lock",
    )

    idempotency_ttl_seconds: int = Field(
        default=DEFAULT_IDEMPOTENCY_TTL_SECONDS,
        ge=1,
        le=86400,
        description="How long an executed trade result is replayed for its key",
    )

    # =========================================================================
    # Upstream Providers
    # =========================================================================

    provider_timeout_seconds: float = Field(
        default=DEFAULT_PROVIDER_TIMEOUT_SECONDS,
        gt=0.0,
        le=60.0,
        description="Total timeout for a single upstream request",
    )

    provider_requests_per_minute: int = Field(
        default=DEFAULT_PROVIDER_REQUESTS_PER_MINUTE,
        ge=1,
        le=1200,
        description="Request budget per provider host",
    )

    # =========================================================================
    # Scheduled Refresh
    # =========================================================================

    refresh_interval_seconds: float = Field(
        default=0.0,
        ge=0.0,
        description="Interval of the in-process price refresh loop (0 disables)",
    )

    refresh_scopes: list[str] = Field(
        default_factory=lambda: ["majors"],
        description="Universe scopes refreshed by the loop",
    )

    # =========================================================================
    # Server & Logging
    # =========================================================================

    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=8000, ge=1, le=65535, description="HTTP port")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )

    log_file: Path | None = Field(
        default=None,
        description="Optional log file path",
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("refresh_scopes", mode="after")
    @classmethod
    def validate_scopes(cls, v: list[str]) -> list[str]:
        """Ensure every refresh scope is known."""
        unknown = [s for s in v if s not in VALID_SCOPES]
        if unknown:
            raise ValueError(f"Unknown refresh scopes: {', '.join(unknown)}")
        return v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def uses_redis(self) -> bool:
        """Whether a shared Redis store is configured."""
        return self.redis_url is not None and bool(self.redis_url.get_secret_value())

    @property
    def fx_ttl_ms(self) -> int:
        """FX TTL in milliseconds, matching stored timestamps."""
        return self.fx_ttl_seconds * 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are loaded only once.
    Clear cache with `get_settings.cache_clear()` if needed.
    """
    return Settings()
