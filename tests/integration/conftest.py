"""Integration test fixtures: real adapters, HTTP mocked at the transport."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
import respx

from portfolio_pricer.core.config import CacheConfig, PricerConfig
from portfolio_pricer.core.models import CacheBackend
from portfolio_pricer.prices.resolver import PriceResolver
from portfolio_pricer.prices.store import SqlitePriceCache

YAHOO_CHART = "https://query1.finance.yahoo.com/v8/finance/chart"
TEFAS_HISTORY = "https://www.tefas.gov.tr/api/DB/BindHistoryInfo"
SWISSQUOTE_GOLD = "https://forex-data-feed.swissquote.com/public-quotes/bboquotes/instrument/XAU/USD"


@pytest.fixture
def sqlite_config(tmp_path: Path) -> PricerConfig:
    return PricerConfig(
        cache=CacheConfig(
            backend=CacheBackend.SQLITE,
            sqlite_path=str(tmp_path / "integration.db"),
        )
    )


@pytest.fixture
def make_sqlite_resolver(sqlite_config, clock):
    """Build resolvers sharing one database file, as separate processes would."""

    async def _make() -> PriceResolver:
        cache = SqlitePriceCache(sqlite_config.cache)
        await cache.initialize()
        return PriceResolver(cache, sqlite_config, clock=clock)

    return _make


@pytest.fixture
def upstream(make_chart, make_fund_rows, swissquote_payload):
    """Every provider endpoint a mixed portfolio touches, mocked."""
    with respx.mock(assert_all_called=False) as mock:
        routes = {
            "USDTRY=X": mock.get(f"{YAHOO_CHART}/USDTRY=X").mock(
                return_value=httpx.Response(200, json=make_chart([31.8, 32.0]))
            ),
            "THYAO.IS": mock.get(f"{YAHOO_CHART}/THYAO.IS").mock(
                return_value=httpx.Response(200, json=make_chart([320.0, 321.5]))
            ),
            "GC=F": mock.get(f"{YAHOO_CHART}/GC=F").mock(
                return_value=httpx.Response(200, json=make_chart([2160.0, 2181.6]))
            ),
            "tefas": mock.post(TEFAS_HISTORY).mock(
                return_value=httpx.Response(
                    200,
                    json={
                        "data": make_fund_rows(
                            [("2024-03-11", 15.2), ("2024-03-12", 15.5), ("2024-03-13", 15.75)]
                        )
                    },
                )
            ),
            "XAU/USD": mock.get(SWISSQUOTE_GOLD).mock(
                return_value=httpx.Response(200, json=swissquote_payload)
            ),
        }
        yield routes
