"""Yahoo Finance quote adapter — equities, FX pairs, futures and indices.

Uses the unauthenticated ``/v8/finance/chart/`` endpoint via httpx.

Latest quotes request a 5-day daily series instead of a single point: the
``previousClose`` in the quote metadata sometimes belongs to the wrong
session around the open/close and for cross-listed instruments, while the
daily close series is already session-aligned by the provider.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from portfolio_pricer.core.config import PricingConfig, YahooConfig
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

_CHART_PATH = "/v8/finance/chart"
_LATEST_RANGE = "5d"

# Chart interval per history range
_HISTORY_INTERVALS: dict[HistoryRange, str] = {
    HistoryRange.ONE_DAY: "15m",
    HistoryRange.ONE_WEEK: "1h",
    HistoryRange.ONE_MONTH: "1d",
    HistoryRange.THREE_MONTHS: "1d",
    HistoryRange.SIX_MONTHS: "1d",
    HistoryRange.ONE_YEAR: "1d",
    HistoryRange.THREE_YEARS: "1wk",
    HistoryRange.FIVE_YEARS: "1wk",
}
_INTRADAY_INTERVALS = {"15m", "1h"}


# --- Wire schema ---


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class ChartMeta(_Wire):
    symbol: str | None = None
    currency: str | None = None
    short_name: str | None = Field(None, alias="shortName")
    long_name: str | None = Field(None, alias="longName")
    regular_market_price: float | None = Field(None, alias="regularMarketPrice")
    previous_close: float | None = Field(None, alias="previousClose")
    chart_previous_close: float | None = Field(None, alias="chartPreviousClose")
    # Exchange offset from UTC in seconds
    gmtoffset: int = 0

    @property
    def exchange_tz(self) -> timezone:
        return timezone(timedelta(seconds=self.gmtoffset))


class ChartQuote(_Wire):
    close: list[float | None] = []
    open: list[float | None] = []


class ChartAdjClose(_Wire):
    adjclose: list[float | None] = []


class ChartIndicators(_Wire):
    quote: list[ChartQuote] = []
    adjclose: list[ChartAdjClose] = []


class ChartResult(_Wire):
    meta: ChartMeta
    timestamp: list[int] = []
    indicators: ChartIndicators = ChartIndicators()

    @property
    def closes(self) -> list[float | None]:
        return self.indicators.quote[0].close if self.indicators.quote else []


class ChartError(_Wire):
    code: str | None = None
    description: str | None = None


class ChartBody(_Wire):
    result: list[ChartResult] | None = None
    error: ChartError | None = None


class ChartResponse(_Wire):
    chart: ChartBody


# --- Adapter ---


class YahooChartAdapter:
    """Transforms raw chart JSON into canonical records.

    Pure: no I/O, so parsing and change computation are unit-testable on
    fixture payloads.
    """

    def __init__(
        self,
        max_change_percent: float = 25.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._max_change_percent = max_change_percent
        self._clock = clock

    def parse(self, raw_data: Any, provider_symbol: ProviderSymbol) -> ChartResult:
        """Validate a chart response and return its first result.

        Raises:
            UpstreamFormatError: on schema mismatch, an API-level error, or an
                empty result list.
        """
        try:
            response = ChartResponse.model_validate(raw_data)
        except ValidationError as e:
            raise UpstreamFormatError(
                f"Unexpected chart payload for {provider_symbol}",
                context={"provider": "yahoo", "symbol": provider_symbol, "reason": str(e)},
            ) from e

        chart = response.chart
        if chart.error is not None:
            raise UpstreamFormatError(
                f"Yahoo error for {provider_symbol}: "
                f"{chart.error.code}: {chart.error.description}",
                context={"provider": "yahoo", "symbol": provider_symbol},
            )
        if not chart.result:
            raise UpstreamFormatError(
                f"No chart results for {provider_symbol}",
                context={"provider": "yahoo", "symbol": provider_symbol},
            )
        return chart.result[0]

    def adapt(self, raw_data: Any, provider_symbol: ProviderSymbol, symbol: Symbol) -> PriceRecord:
        """Build the latest-quote record from a multi-day chart response.

        The two most recent non-null closes are current and previous. With
        fewer than two, the metadata's previous close is the baseline, and
        failing that the change is zero.
        """
        result = self.parse(raw_data, provider_symbol)
        meta = result.meta
        # (bar index, close) for every non-null close
        closes = [(i, c) for i, c in enumerate(result.closes) if c is not None]
        current_idx: int | None = None

        if len(closes) >= 2:
            (current_idx, current), (_, previous) = closes[-1], closes[-2]
        else:
            current = meta.regular_market_price
            if current is None and closes:
                current_idx, current = closes[-1]
            if current is None:
                raise UpstreamFormatError(
                    f"No current price for {provider_symbol}",
                    context={"provider": "yahoo", "symbol": provider_symbol},
                )
            previous = meta.previous_close or meta.chart_previous_close or current

        if current <= 0:
            raise UpstreamFormatError(
                f"Non-positive price {current} for {provider_symbol}",
                context={"provider": "yahoo", "symbol": provider_symbol},
            )

        now = self._clock()
        if current_idx is None and result.timestamp:
            # Live metadata price belongs to the latest session
            current_idx = len(result.timestamp) - 1
        if current_idx is not None and current_idx < len(result.timestamp):
            moment = datetime.fromtimestamp(result.timestamp[current_idx], tz=timezone.utc)
        else:
            moment = now
        price_date = moment.astimezone(meta.exchange_tz).date()

        return PriceRecord.from_quote(
            symbol,
            current,
            previous,
            max_change_percent=self._max_change_percent,
            price_date=price_date,
            last_update=now,
            name=meta.short_name or meta.long_name or meta.symbol,
            currency=meta.currency,
        )

    def adapt_history(
        self, raw_data: Any, provider_symbol: ProviderSymbol, intraday: bool = False
    ) -> list[HistoricalPrice]:
        """Parse a chart response into an oldest→newest series.

        Null closes (non-trading intervals) are skipped.
        """
        result = self.parse(raw_data, provider_symbol)
        closes = result.closes
        tz = result.meta.exchange_tz

        points: list[HistoricalPrice] = []
        for i, ts in enumerate(result.timestamp):
            close = closes[i] if i < len(closes) else None
            if close is None:
                continue
            moment = datetime.fromtimestamp(ts, tz=timezone.utc)
            points.append(
                HistoricalPrice(
                    date=moment.astimezone(tz).date(),
                    price=round(close, 4),
                    timestamp=moment if intraday else None,
                )
            )
        return sorted(points, key=lambda p: p.sort_key)


class YahooQuoteProvider:
    """Fetches quotes and history from Yahoo Finance's chart API.

    Parameters
    ----------
    config : YahooConfig
        Endpoint, timeouts and request budget.
    pricing : PricingConfig
        Change-percent ceiling applied to every record.
    client : QuoteHttpClient | None
        Injected transport (useful for testing). Built from config if None.
    """

    def __init__(
        self,
        config: YahooConfig | None = None,
        pricing: PricingConfig | None = None,
        client: QuoteHttpClient | None = None,
        adapter: YahooChartAdapter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or YahooConfig()
        pricing = pricing or PricingConfig()
        self._clock = clock
        self._client = client or QuoteHttpClient(
            provider="yahoo",
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            rate_limit=self._config.rate_limit,
            headers={"User-Agent": self._config.user_agent, "Accept": "application/json"},
        )
        self._adapter = adapter or YahooChartAdapter(pricing.max_change_percent, clock)

    @property
    def name(self) -> str:
        return "yahoo"

    async def close(self) -> None:
        await self._client.close()

    async def fetch_latest(
        self, provider_symbol: ProviderSymbol, symbol: Symbol | None = None
    ) -> PriceRecord:
        """Latest quote for `provider_symbol`, stamped with `symbol`.

        Never raises for transport or format failures; those come back as a
        zero-priced record with ``error`` set.
        """
        symbol = symbol or provider_symbol
        try:
            raw = await self._client.get_json(
                f"{_CHART_PATH}/{provider_symbol}",
                params={"range": _LATEST_RANGE, "interval": "1d", "includePrePost": "false"},
            )
            return self._adapter.adapt(raw, provider_symbol, symbol)
        except QuoteError as e:
            logger.error("Yahoo quote failed for %s (%s): %s", symbol, provider_symbol, e)
            return e.to_record(symbol)

    async def fetch_history(
        self, provider_symbol: ProviderSymbol, range_: HistoryRange
    ) -> list[HistoricalPrice]:
        """Close series for `range_`, oldest first.

        Raises:
            QuoteError: transport or format failure.
        """
        end = self._clock()
        start = end - range_.span
        interval = _HISTORY_INTERVALS[range_]
        raw = await self._client.get_json(
            f"{_CHART_PATH}/{provider_symbol}",
            params={
                "period1": str(int(start.timestamp())),
                "period2": str(int(end.timestamp())),
                "interval": interval,
                "includePrePost": "false",
                "events": "div,split",
            },
            timeout=self._config.history_timeout,
        )
        return self._adapter.adapt_history(
            raw, provider_symbol, intraday=interval in _INTRADAY_INTERVALS
        )
