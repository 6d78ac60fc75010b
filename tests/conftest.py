"""Shared pytest fixtures for portfolio-pricer."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from portfolio_pricer.core.config import CacheConfig, PricerConfig, PricingConfig
from portfolio_pricer.core.models import (
    CacheBackend,
    FundZeroPricePolicy,
    PriceErrorKind,
    PriceRecord,
    PriceSource,
)
from portfolio_pricer.prices.resolver import PriceResolver
from portfolio_pricer.prices.store import MemoryPriceCache

# Wednesday 13 March 2024, 10:00 UTC (13:00 in Istanbul, market open)
FIXED_NOW = datetime(2024, 3, 13, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def memory_config() -> PricerConfig:
    return PricerConfig(cache=CacheConfig(backend=CacheBackend.MEMORY))


@pytest.fixture
def pricing() -> PricingConfig:
    return PricingConfig()


@pytest.fixture
def sample_record() -> PriceRecord:
    return PriceRecord(
        symbol="THYAO",
        price=321.5,
        change=1.5,
        change_percent=0.47,
        previous_close=320.0,
        price_date=date(2024, 3, 13),
        last_update=FIXED_NOW,
        name="TURK HAVA YOLLARI",
        currency="TRY",
        source=PriceSource.API,
    )


@pytest.fixture
def make_chart():
    """Build a Yahoo chart response from a close series."""

    def _make(
        closes: list[float | None],
        regular_market_price: float | None = None,
        previous_close: float | None = None,
        chart_previous_close: float | None = None,
        timestamps: list[int] | None = None,
        short_name: str | None = "TEST",
        currency: str = "TRY",
        gmtoffset: int | None = None,
    ) -> dict:
        if timestamps is None:
            end = int(FIXED_NOW.timestamp())
            timestamps = [end - 86400 * (len(closes) - 1 - i) for i in range(len(closes))]
        meta: dict = {"currency": currency, "symbol": "TEST"}
        if short_name is not None:
            meta["shortName"] = short_name
        if regular_market_price is not None:
            meta["regularMarketPrice"] = regular_market_price
        if previous_close is not None:
            meta["previousClose"] = previous_close
        if chart_previous_close is not None:
            meta["chartPreviousClose"] = chart_previous_close
        if gmtoffset is not None:
            meta["gmtoffset"] = gmtoffset
        return {
            "chart": {
                "result": [
                    {
                        "meta": meta,
                        "timestamp": timestamps,
                        "indicators": {"quote": [{"close": closes}]},
                    }
                ],
                "error": None,
            }
        }

    return _make


@pytest.fixture
def make_fund_rows():
    """Build TEFAS BindHistoryInfo rows from (ISO date, NAV) pairs."""

    def _make(
        rows: list[tuple[str, float]],
        code: str = "AFA",
        name: str = "AK PORTFOY AMERIKA YABANCI HISSE SENEDI FONU",
    ) -> list[dict]:
        out = []
        for iso, price in rows:
            day = date.fromisoformat(iso)
            millis = int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp() * 1000)
            out.append(
                {
                    "TARIH": str(millis),
                    "FONKODU": code,
                    "FONUNVAN": name,
                    "FIYAT": price,
                    "TEDPAYSAYISI": 0,
                    "KISISAYISI": 0,
                    "PORTFOYBUYUKLUK": 0,
                    "BORSABULTENFIYAT": "",
                }
            )
        return out

    return _make


@pytest.fixture
def swissquote_payload() -> list[dict]:
    return [
        {
            "topo": {"platform": "AT", "server": "AT1"},
            "spreadProfilePrices": [
                {"spreadProfile": "standard", "bid": 2150.0, "ask": 2152.0},
            ],
            "ts": 1710324000000,
        },
        {
            "topo": {"platform": "SwissquoteLtd", "server": "Live5"},
            "spreadProfilePrices": [
                {"spreadProfile": "standard", "bid": 2159.0, "ask": 2163.0},
                {"spreadProfile": "prime", "bid": 2160.0, "ask": 2161.5},
                {"spreadProfile": "elite", "bid": 2160.5, "ask": 2161.5},
            ],
            "ts": 1710324000000,
        },
    ]


# --- Fake adapters ---


def _quote(symbol: str, price: float, previous: float | None = None, **fields) -> PriceRecord:
    previous = price if previous is None else previous
    return PriceRecord.from_quote(symbol, price, previous, max_change_percent=25.0, **fields)


class FakeQuotes:
    """Stands in for the equity and spot adapters.

    Unknown provider symbols come back as network-error records; an
    exception stored as the outcome is raised.
    """

    def __init__(self, records=None, history=None, delay: float = 0.0):
        self.records: dict = records or {}
        self.history: dict = history or {}
        self.delay = delay
        self.calls: list[str] = []
        self.history_calls: list[str] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    async def fetch_latest(self, provider_symbol, symbol=None):
        self.calls.append(provider_symbol)
        await asyncio.sleep(self.delay)
        outcome = self.records.get(provider_symbol)
        if outcome is None:
            return PriceRecord.failure(
                symbol or provider_symbol, "HTTP 404", PriceErrorKind.NETWORK
            )
        if isinstance(outcome, Exception):
            raise outcome
        return outcome.model_copy(update={"symbol": symbol or provider_symbol})

    async def fetch_history(self, provider_symbol, range_):
        self.history_calls.append(provider_symbol)
        outcome = self.history.get(provider_symbol, [])
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


class FakeFunds(FakeQuotes):
    """Fund adapter stand-in: unknown codes are None, SUBSTITUTE lifts the last NAV."""

    def __init__(self, records=None, history=None):
        super().__init__(records, history)
        self.policies: list[FundZeroPricePolicy | None] = []
        self.resets = 0
        self.in_flight = 0

    async def fetch_latest(self, provider_symbol, symbol=None, zero_price_policy=None):
        self.calls.append(provider_symbol)
        self.policies.append(zero_price_policy)
        outcome = self.records.get(provider_symbol)
        if outcome is None:
            return None
        if zero_price_policy == FundZeroPricePolicy.SUBSTITUTE and outcome.is_error:
            outcome = outcome.model_copy(
                update={"price": outcome.previous_close, "error": None, "error_kind": None}
            )
        return outcome.model_copy(update={"symbol": symbol or provider_symbol})

    def reset(self):
        self.resets += 1


@pytest.fixture
def yahoo() -> FakeQuotes:
    return FakeQuotes(
        {
            "USDTRY=X": _quote("USDTRY=X", 32.0, 31.8, price_date=date(2024, 3, 13)),
            "THYAO.IS": _quote("THYAO.IS", 321.5, 320.0, price_date=date(2024, 3, 13)),
            "GC=F": _quote("GC=F", 2181.6, 2160.0),
            "SI=F": _quote("SI=F", 24.5, 24.5),
        }
    )


@pytest.fixture
def funds() -> FakeFunds:
    return FakeFunds({"AFA": _quote("AFA", 15.75, 15.5, price_date=date(2024, 3, 13))})


@pytest.fixture
def spot() -> FakeQuotes:
    return FakeQuotes(
        {
            "XAU/USD": PriceRecord(symbol="XAU/USD", price=2161.0, previous_close=2161.0),
            "XAG/USD": PriceRecord(symbol="XAG/USD", price=24.4, previous_close=24.4),
        }
    )


@pytest.fixture
def fake_resolver(memory_config, yahoo, funds, spot, clock) -> PriceResolver:
    """Resolver over an in-memory cache and the fake adapters."""
    return PriceResolver(
        MemoryPriceCache(),
        memory_config,
        yahoo=yahoo,
        tefas=funds,
        spot=spot,
        clock=clock,
    )
