"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from datetime import time
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from portfolio_pricer.core.exceptions import ConfigError
from portfolio_pricer.core.models import CacheBackend, FundZeroPricePolicy


class YahooConfig(BaseModel):
    """Equity / FX / index quote provider (Yahoo Finance chart API)."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://query1.finance.yahoo.com"
    user_agent: str = "Mozilla/5.0 (compatible; portfolio-pricer/0.1)"
    timeout: float = 15.0
    history_timeout: float = 20.0
    rate_limit: int = 5
    concurrency: int = 4
    dispatch_delay: float = 0.0

    @field_validator("concurrency", "rate_limit")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


class TefasConfig(BaseModel):
    """Turkish mutual-fund NAV provider (TEFAS history endpoint)."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://www.tefas.gov.tr"
    fund_type: str = "YAT"
    timeout: float = 15.0
    history_timeout: float = 20.0
    lookback_days: int = 7
    history_chunk_days: int = 90
    min_request_interval: float = 5.0
    dispatch_delay: float = 0.1
    concurrency: int = 1
    rate_limit: int = 2

    @field_validator("lookback_days")
    @classmethod
    def lookback_covers_weekend(cls, v: int) -> int:
        """A shorter window can miss Friday's NAV on a Monday morning."""
        if v < 3:
            raise ValueError("lookback_days must be >= 3")
        return v

    @field_validator("concurrency", "rate_limit", "history_chunk_days")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


class SwissquoteConfig(BaseModel):
    """Spot precious-metal quote feed (Swissquote public BBO quotes)."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://forex-data-feed.swissquote.com"
    timeout: float = 15.0
    rate_limit: int = 5
    preferred_platform: str = "SwissquoteLtd"
    preferred_profiles: list[str] = ["elite", "prime"]


class FreshnessConfig(BaseModel):
    """Cache freshness rules and the local exchange's trading window."""

    model_config = ConfigDict(frozen=True)

    cache_duration_seconds: int = 60
    market_open_utc: time = time(7, 0)
    market_close_utc: time = time(15, 10)
    market_utc_offset_hours: int = 3

    @model_validator(mode="after")
    def open_before_close(self) -> FreshnessConfig:
        if self.market_open_utc >= self.market_close_utc:
            raise ValueError("market_open_utc must be before market_close_utc")
        return self


class PricingConfig(BaseModel):
    """Normalization and cache-write policy."""

    model_config = ConfigDict(frozen=True)

    max_change_percent: float = 25.0
    derived_max_change_percent: float = 15.0
    cache_derived: bool = False
    fund_zero_price_policy: FundZeroPricePolicy = FundZeroPricePolicy.REPORT

    @field_validator("max_change_percent", "derived_max_change_percent")
    @classmethod
    def ceiling_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("change ceilings must be > 0")
        return v


class CacheConfig(BaseModel):
    """Durable price cache configuration."""

    model_config = ConfigDict(frozen=True)

    backend: CacheBackend = CacheBackend.SQLITE
    sqlite_path: str = "./data/price_cache.db"


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "127.0.0.1"
    port: int = 8000
    api_key: str | None = None


class PricerConfig(BaseModel):
    """Root configuration for portfolio-pricer."""

    model_config = ConfigDict(frozen=True)

    yahoo: YahooConfig = YahooConfig()
    tefas: TefasConfig = TefasConfig()
    swissquote: SwissquoteConfig = SwissquoteConfig()
    freshness: FreshnessConfig = FreshnessConfig()
    pricing: PricingConfig = PricingConfig()
    cache: CacheConfig = CacheConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "PORTFOLIO_PRICER_",
) -> PricerConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (PORTFOLIO_PRICER_YAHOO__TIMEOUT, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        PORTFOLIO_PRICER_TEFAS__LOOKBACK_DAYS=10  ->  tefas.lookback_days = 10
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return PricerConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("PORTFOLIO_PRICER_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from PORTFOLIO_PRICER_CONFIG not found: {env_path}",
                context={"field": "PORTFOLIO_PRICER_CONFIG", "value": env_path},
            )
        return p

    default = Path("portfolio-pricer.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
