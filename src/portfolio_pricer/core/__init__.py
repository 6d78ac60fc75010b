"""portfolio_pricer.core — Foundation types, config, and exceptions."""

from portfolio_pricer.core.config import (
    APIConfig,
    CacheConfig,
    FreshnessConfig,
    PricerConfig,
    PricingConfig,
    SwissquoteConfig,
    TefasConfig,
    YahooConfig,
    load_config,
)
from portfolio_pricer.core.exceptions import (
    CacheError,
    ConfigError,
    DependencyUnavailableError,
    FundNotFoundError,
    PricerError,
    QuoteError,
    TransportError,
    UpstreamFormatError,
    ZeroPriceError,
)
from portfolio_pricer.core.models import (
    AssetType,
    BatchStats,
    CacheStats,
    CacheBackend,
    CacheEntry,
    FundZeroPricePolicy,
    HistoricalPrice,
    HistoryRange,
    PriceErrorKind,
    PriceRecord,
    PriceSource,
    ProviderSymbol,
    Symbol,
)

__all__ = [
    # Type aliases
    "Symbol",
    "ProviderSymbol",
    # Enums
    "AssetType",
    "PriceSource",
    "PriceErrorKind",
    "HistoryRange",
    "FundZeroPricePolicy",
    "CacheBackend",
    # Price models
    "HistoricalPrice",
    "PriceRecord",
    "CacheEntry",
    "BatchStats",
    "CacheStats",
    # Config
    "PricerConfig",
    "YahooConfig",
    "TefasConfig",
    "SwissquoteConfig",
    "FreshnessConfig",
    "PricingConfig",
    "CacheConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "PricerError",
    "ConfigError",
    "QuoteError",
    "TransportError",
    "UpstreamFormatError",
    "FundNotFoundError",
    "ZeroPriceError",
    "DependencyUnavailableError",
    "CacheError",
]
