"""Swissquote spot precious-metal adapter.

The public BBO feed returns one entry per trading platform, each with a set
of spread profiles. The adapter picks the preferred platform and profile by
name and prices the instrument at the bid/ask midpoint.

The feed has no previous close, so records carry zero change unless a
derived instrument supplies a baseline.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from portfolio_pricer.core.config import SwissquoteConfig
from portfolio_pricer.core.exceptions import QuoteError, UpstreamFormatError
from portfolio_pricer.core.models import (
    HistoricalPrice,
    HistoryRange,
    PriceRecord,
    ProviderSymbol,
    Symbol,
    utcnow,
)
from portfolio_pricer.prices.http import QuoteHttpClient

logger = logging.getLogger(__name__)

_QUOTES_PATH = "/public-quotes/bboquotes/instrument"

# Caller ticker -> (instrument, quote currency)
SPOT_INSTRUMENTS: dict[str, tuple[str, str]] = {
    "XAUUSD": ("XAU", "USD"),
    "XAGUSD": ("XAG", "USD"),
}

# The BBO feed is live-only; charts use the front-month future instead.
HISTORY_PROXIES: dict[str, str] = {
    "XAUUSD": "GC=F",
    "XAGUSD": "SI=F",
}


class SpreadProfilePrice(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    spread_profile: str = Field(alias="spreadProfile")
    bid: float
    ask: float


class PlatformTopology(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    platform: str
    server: str | None = None


class PlatformQuote(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    topo: PlatformTopology
    spread_profile_prices: list[SpreadProfilePrice] = Field(
        default_factory=list, alias="spreadProfilePrices"
    )
    ts: int | None = None


_QUOTES = TypeAdapter(list[PlatformQuote])


def select_quote(
    platforms: Sequence[PlatformQuote],
    preferred_platform: str,
    preferred_profiles: Sequence[str],
) -> SpreadProfilePrice | None:
    """Pick the preferred platform, else the first one; then the first
    preferred profile present on it, else its first profile.

    Platforms without any spread profile are never picked.
    """
    quoted = [p for p in platforms if p.spread_profile_prices]
    if not quoted:
        return None
    platform = next(
        (p for p in quoted if p.topo.platform == preferred_platform),
        quoted[0],
    )
    profiles = platform.spread_profile_prices
    for name in preferred_profiles:
        for profile in profiles:
            if profile.spread_profile == name:
                return profile
    return profiles[0]


def split_instrument(provider_symbol: ProviderSymbol) -> tuple[str, str]:
    """``XAUUSD`` or ``XAU/USD`` -> ``("XAU", "USD")``."""
    if provider_symbol in SPOT_INSTRUMENTS:
        return SPOT_INSTRUMENTS[provider_symbol]
    if "/" in provider_symbol:
        base, quote = provider_symbol.split("/", 1)
        return base, quote
    return provider_symbol[:3], provider_symbol[3:]


class SpotMetalAdapter:
    """Fetches spot metal quotes from the Swissquote BBO feed.

    Parameters
    ----------
    config : SwissquoteConfig
        Endpoint and platform/profile preferences.
    client : QuoteHttpClient | None
        Injected transport (useful for testing). Built from config if None.
    market_utc_offset_hours : int
        Wall-clock offset of the home market; ``price_date`` is its calendar date.
    """

    def __init__(
        self,
        config: SwissquoteConfig | None = None,
        client: QuoteHttpClient | None = None,
        clock: Callable[[], datetime] = utcnow,
        market_utc_offset_hours: int = 3,
    ) -> None:
        self._config = config or SwissquoteConfig()
        self._clock = clock
        self._market_tz = timezone(timedelta(hours=market_utc_offset_hours))
        self._client = client or QuoteHttpClient(
            provider="swissquote",
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            rate_limit=self._config.rate_limit,
            headers={"Accept": "application/json"},
        )

    @property
    def name(self) -> str:
        return "swissquote"

    async def close(self) -> None:
        await self._client.close()

    def adapt(self, raw_data: Any, provider_symbol: ProviderSymbol, symbol: Symbol) -> PriceRecord:
        """Build a zero-change record from a raw BBO response."""
        try:
            platforms = _QUOTES.validate_python(raw_data)
        except ValidationError as e:
            raise UpstreamFormatError(
                f"Unexpected Swissquote payload for {provider_symbol}",
                context={"provider": "swissquote", "symbol": provider_symbol, "reason": str(e)},
            ) from e

        quote = select_quote(
            platforms, self._config.preferred_platform, self._config.preferred_profiles
        )
        if quote is None:
            raise UpstreamFormatError(
                f"No quotes for {provider_symbol}",
                context={"provider": "swissquote", "symbol": provider_symbol},
            )

        mid = (quote.bid + quote.ask) / 2
        if mid <= 0:
            raise UpstreamFormatError(
                f"Non-positive midpoint for {provider_symbol}",
                context={"provider": "swissquote", "symbol": provider_symbol},
            )

        now = self._clock()
        _, currency = split_instrument(provider_symbol)
        return PriceRecord(
            symbol=symbol,
            price=round(mid, 4),
            previous_close=round(mid, 4),
            price_date=now.astimezone(self._market_tz).date(),
            last_update=now,
            currency=currency,
        )

    async def fetch_latest(
        self, provider_symbol: ProviderSymbol, symbol: Symbol | None = None
    ) -> PriceRecord:
        """Spot midpoint for `provider_symbol`; failures come back as error records."""
        symbol = symbol or provider_symbol
        base, quote = split_instrument(provider_symbol)
        try:
            raw = await self._client.get_json(f"{_QUOTES_PATH}/{base}/{quote}")
            return self.adapt(raw, provider_symbol, symbol)
        except QuoteError as e:
            logger.error("Swissquote quote failed for %s: %s", provider_symbol, e)
            return e.to_record(symbol)

    async def fetch_history(
        self, provider_symbol: ProviderSymbol, range_: HistoryRange
    ) -> list[HistoricalPrice]:
        # The public feed is live-only.
        return []
