"""Tests for portfolio_pricer.prices.yahoo (chart adapter and provider)."""

from __future__ import annotations

from datetime import date, datetime, timezone

import httpx
import pytest
import respx

from portfolio_pricer.core.exceptions import TransportError, UpstreamFormatError
from portfolio_pricer.core.models import HistoryRange, PriceErrorKind
from portfolio_pricer.prices.yahoo import YahooChartAdapter, YahooQuoteProvider

CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart"


# --- Fixtures ---


@pytest.fixture
def adapter(clock) -> YahooChartAdapter:
    return YahooChartAdapter(max_change_percent=25.0, clock=clock)


@pytest.fixture
async def provider(clock):
    p = YahooQuoteProvider(clock=clock)
    yield p
    await p.close()


# --- YahooChartAdapter ---


class TestAdapt:
    def test_last_two_closes(self, adapter, make_chart):
        raw = make_chart([98.0, 100.0, 102.5], regular_market_price=999.0, previous_close=1.0)
        record = adapter.adapt(raw, "THYAO.IS", "THYAO")

        assert record.symbol == "THYAO"
        assert record.price == 102.5
        assert record.previous_close == 100.0
        assert record.change == 2.5
        assert record.change_percent == 2.5
        assert record.price_date == date(2024, 3, 13)
        assert record.name == "TEST"
        assert record.currency == "TRY"
        assert record.error is None

    def test_null_closes_skipped(self, adapter, make_chart):
        raw = make_chart([100.0, None, 110.0, None])
        record = adapter.adapt(raw, "GARAN.IS", "GARAN")
        assert record.price == 110.0
        assert record.previous_close == 100.0
        assert record.change_percent == 10.0
        # Dated by the bar that supplied the price, not the trailing hole
        assert record.price_date == date(2024, 3, 12)

    def test_price_date_in_exchange_time(self, adapter, make_chart):
        # Daily FX bars open at 23:00 UTC, midnight in London
        bars = [
            datetime(2024, 3, 11, 23, tzinfo=timezone.utc),
            datetime(2024, 3, 12, 23, tzinfo=timezone.utc),
        ]
        raw = make_chart(
            [35.0, 35.2],
            timestamps=[int(b.timestamp()) for b in bars],
            gmtoffset=3600,
        )
        record = adapter.adapt(raw, "GBPTRY=X", "GBPTRY")
        assert record.price_date == date(2024, 3, 13)

    def test_meta_price_dated_by_latest_bar(self, adapter, make_chart):
        raw = make_chart([None, None], regular_market_price=35.0, previous_close=34.0)
        record = adapter.adapt(raw, "USDTRY=X", "USDTRY")
        assert record.price_date == date(2024, 3, 13)

    def test_single_close_uses_meta_previous(self, adapter, make_chart):
        raw = make_chart([None, 35.0], regular_market_price=35.0, previous_close=34.0)
        record = adapter.adapt(raw, "USDTRY=X", "USDTRY")
        assert record.price == 35.0
        assert record.previous_close == 34.0
        assert record.change == 1.0

    def test_falls_back_to_chart_previous_close(self, adapter, make_chart):
        raw = make_chart([None], regular_market_price=50.0, chart_previous_close=40.0)
        record = adapter.adapt(raw, "EURTRY=X", "EURTRY")
        assert record.previous_close == 40.0
        assert record.change_percent == 25.0

    def test_no_baseline_means_zero_change(self, adapter, make_chart):
        raw = make_chart([None], regular_market_price=50.0)
        record = adapter.adapt(raw, "EURTRY=X", "EURTRY")
        assert record.price == 50.0
        assert record.change == 0.0
        assert record.change_percent == 0.0

    def test_change_percent_clamped(self, adapter, make_chart):
        raw = make_chart([100.0, 200.0])
        record = adapter.adapt(raw, "ASELS.IS", "ASELS")
        assert record.change == 100.0
        assert record.change_percent == 25.0

    def test_negative_change_clamped_keeps_sign(self, adapter, make_chart):
        raw = make_chart([100.0, 10.0])
        record = adapter.adapt(raw, "ASELS.IS", "ASELS")
        assert record.change_percent == -25.0

    def test_name_falls_back_to_long_name(self, adapter, make_chart):
        raw = make_chart([1.0, 2.0], short_name=None)
        raw["chart"]["result"][0]["meta"]["longName"] = "Long Name"
        assert adapter.adapt(raw, "X", "X").name == "Long Name"

    def test_missing_price_raises(self, adapter, make_chart):
        with pytest.raises(UpstreamFormatError, match="No current price"):
            adapter.adapt(make_chart([None]), "BAD.IS", "BAD")

    def test_non_positive_price_raises(self, adapter, make_chart):
        with pytest.raises(UpstreamFormatError, match="Non-positive"):
            adapter.adapt(make_chart([1.0, 0.0]), "BAD.IS", "BAD")

    def test_api_error_raises(self, adapter):
        raw = {"chart": {"result": None, "error": {"code": "Not Found", "description": "No data"}}}
        with pytest.raises(UpstreamFormatError, match="Not Found"):
            adapter.adapt(raw, "NOPE.IS", "NOPE")

    def test_empty_result_raises(self, adapter):
        with pytest.raises(UpstreamFormatError, match="No chart results"):
            adapter.adapt({"chart": {"result": [], "error": None}}, "X", "X")

    def test_wrong_shape_raises(self, adapter):
        with pytest.raises(UpstreamFormatError):
            adapter.adapt({"unexpected": True}, "X", "X")


class TestAdaptHistory:
    def test_oldest_first_and_nulls_skipped(self, adapter, make_chart):
        raw = make_chart([10.0, None, 12.123456])
        points = adapter.adapt_history(raw, "THYAO.IS")

        assert [p.price for p in points] == [10.0, 12.1235]
        assert points[0].date < points[1].date
        assert all(p.timestamp is None for p in points)

    def test_dates_in_exchange_time(self, adapter, make_chart):
        bar = datetime(2024, 3, 12, 23, tzinfo=timezone.utc)
        raw = make_chart([35.2], timestamps=[int(bar.timestamp())], gmtoffset=3600)
        [point] = adapter.adapt_history(raw, "GBPTRY=X")
        assert point.date == date(2024, 3, 13)

    def test_intraday_keeps_timestamp(self, adapter, make_chart):
        raw = make_chart([1.0, 2.0], timestamps=[1710316800, 1710317700])
        points = adapter.adapt_history(raw, "THYAO.IS", intraday=True)
        assert points[0].timestamp is not None
        assert points[0].timestamp < points[1].timestamp


# --- YahooQuoteProvider ---


class TestFetchLatest:
    @respx.mock
    async def test_fetches_five_day_series(self, provider, make_chart):
        route = respx.get(f"{CHART_URL}/THYAO.IS").mock(
            return_value=httpx.Response(200, json=make_chart([300.0, 321.5]))
        )

        record = await provider.fetch_latest("THYAO.IS", "THYAO")

        assert record.symbol == "THYAO"
        assert record.price == 321.5
        params = route.calls.last.request.url.params
        assert params["range"] == "5d"
        assert params["interval"] == "1d"

    @respx.mock
    async def test_defaults_symbol_to_provider_symbol(self, provider, make_chart):
        respx.get(f"{CHART_URL}/GC=F").mock(
            return_value=httpx.Response(200, json=make_chart([2150.0, 2160.0]))
        )
        record = await provider.fetch_latest("GC=F")
        assert record.symbol == "GC=F"

    @respx.mock
    async def test_http_error_becomes_error_record(self, provider):
        respx.get(f"{CHART_URL}/NOPE.IS").mock(return_value=httpx.Response(404))

        record = await provider.fetch_latest("NOPE.IS", "NOPE")

        assert record.symbol == "NOPE"
        assert record.price == 0.0
        assert record.error_kind == PriceErrorKind.NETWORK
        assert "404" in record.error

    @respx.mock
    async def test_non_json_becomes_malformed(self, provider):
        respx.get(f"{CHART_URL}/THYAO.IS").mock(
            return_value=httpx.Response(200, text="<html>blocked</html>")
        )
        record = await provider.fetch_latest("THYAO.IS", "THYAO")
        assert record.error_kind == PriceErrorKind.MALFORMED

    @respx.mock
    async def test_retries_after_rate_limit(self, provider, make_chart):
        route = respx.get(f"{CHART_URL}/THYAO.IS").mock(
            side_effect=[
                httpx.Response(429, headers={"Retry-After": "0"}),
                httpx.Response(200, json=make_chart([300.0, 310.0])),
            ]
        )

        record = await provider.fetch_latest("THYAO.IS", "THYAO")

        assert record.price == 310.0
        assert route.call_count == 2

    @respx.mock
    async def test_sends_user_agent(self, provider, make_chart):
        route = respx.get(f"{CHART_URL}/THYAO.IS").mock(
            return_value=httpx.Response(200, json=make_chart([1.0, 2.0]))
        )
        await provider.fetch_latest("THYAO.IS")
        assert "portfolio-pricer" in route.calls.last.request.headers["User-Agent"]


class TestFetchHistory:
    @respx.mock
    async def test_daily_range(self, provider, make_chart):
        route = respx.get(f"{CHART_URL}/THYAO.IS").mock(
            return_value=httpx.Response(200, json=make_chart([300.0, None, 310.0]))
        )

        points = await provider.fetch_history("THYAO.IS", HistoryRange.ONE_MONTH)

        assert [p.price for p in points] == [300.0, 310.0]
        params = route.calls.last.request.url.params
        assert params["interval"] == "1d"
        assert int(params["period2"]) - int(params["period1"]) == 30 * 86400

    @respx.mock
    async def test_intraday_range(self, provider, make_chart):
        route = respx.get(f"{CHART_URL}/USDTRY=X").mock(
            return_value=httpx.Response(
                200, json=make_chart([32.1, 32.2], timestamps=[1710316800, 1710317700])
            )
        )

        points = await provider.fetch_history("USDTRY=X", HistoryRange.ONE_DAY)

        assert route.calls.last.request.url.params["interval"] == "15m"
        assert all(p.timestamp is not None for p in points)

    @pytest.mark.parametrize(
        "range_, interval",
        [(HistoryRange.ONE_WEEK, "1h"), (HistoryRange.ONE_YEAR, "1d"), (HistoryRange.FIVE_YEARS, "1wk")],
    )
    @respx.mock
    async def test_interval_per_range(self, provider, make_chart, range_, interval):
        route = respx.get(f"{CHART_URL}/GARAN.IS").mock(
            return_value=httpx.Response(200, json=make_chart([1.0, 2.0]))
        )
        await provider.fetch_history("GARAN.IS", range_)
        assert route.calls.last.request.url.params["interval"] == interval

    @respx.mock
    async def test_failure_raises(self, provider):
        respx.get(f"{CHART_URL}/NOPE.IS").mock(return_value=httpx.Response(404))
        with pytest.raises(TransportError):
            await provider.fetch_history("NOPE.IS", HistoryRange.ONE_MONTH)
