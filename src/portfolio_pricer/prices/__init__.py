"""Price resolution and caching for a multi-asset portfolio.

Architecture
------------
Uses the adapter pattern to decouple quote providers from consumers:

    Provider JSON → Adapter → PriceRecord → PriceResolver → Consumer
                                               ↕
                                          PriceCache

Key abstractions:

- ``classify`` / ``transform``: Lexical asset typing and provider-symbol mapping.
- ``FreshnessPolicy``: Decides whether a cached record may be served.
- ``YahooQuoteProvider``: Equities, FX pairs and futures (Yahoo chart API).
- ``TefasFundAdapter``: Turkish mutual-fund NAVs (TEFAS).
- ``SpotMetalAdapter``: Spot precious metals (Swissquote BBO feed).
- ``DerivedPriceCalculator``: Formula instruments such as gram gold in TRY.
- ``BoundedRequestScheduler``: Per-provider concurrency-limited work queue.
- ``PriceCache``: Durable symbol → record store (SQLite or in-memory).
- ``PriceResolver``: Cache-first batch orchestration.

Adding a new quote provider:
1. Write an adapter that implements ``QuoteAdapter.fetch_latest``.
2. Route its symbols in ``PriceResolver._fetch_live``.
"""

from portfolio_pricer.prices.classifier import classify, normalize, transform
from portfolio_pricer.prices.derived import (
    DERIVED_INSTRUMENTS,
    UNITS_PER_OUNCE,
    DerivedInstrument,
    DerivedPriceCalculator,
    Leg,
    LegSource,
)
from portfolio_pricer.prices.freshness import FreshnessPolicy
from portfolio_pricer.prices.http import QuoteHttpClient
from portfolio_pricer.prices.provider import FundQuoteAdapter, HistoryAdapter, QuoteAdapter
from portfolio_pricer.prices.resolver import PriceBatch, PriceResolver
from portfolio_pricer.prices.scheduler import BoundedRequestScheduler
from portfolio_pricer.prices.store import (
    MemoryPriceCache,
    PriceCache,
    SqlitePriceCache,
    create_cache,
)
from portfolio_pricer.prices.swissquote import SpotMetalAdapter
from portfolio_pricer.prices.tefas import TefasFundAdapter, process_fund_history
from portfolio_pricer.prices.yahoo import YahooChartAdapter, YahooQuoteProvider

__all__ = [
    # Classification & freshness
    "classify",
    "normalize",
    "transform",
    "FreshnessPolicy",
    # Protocols
    "QuoteAdapter",
    "FundQuoteAdapter",
    "HistoryAdapter",
    "PriceCache",
    # Adapters
    "QuoteHttpClient",
    "YahooChartAdapter",
    "YahooQuoteProvider",
    "TefasFundAdapter",
    "process_fund_history",
    "SpotMetalAdapter",
    # Derived instruments
    "DERIVED_INSTRUMENTS",
    "UNITS_PER_OUNCE",
    "DerivedInstrument",
    "DerivedPriceCalculator",
    "Leg",
    "LegSource",
    # Orchestration
    "BoundedRequestScheduler",
    "PriceBatch",
    "PriceResolver",
    # Storage
    "MemoryPriceCache",
    "SqlitePriceCache",
    "create_cache",
]
