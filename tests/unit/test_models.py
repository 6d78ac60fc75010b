"""Tests for portfolio_pricer.core.models."""

from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from portfolio_pricer.core.models import (
    BatchStats,
    CacheEntry,
    HistoricalPrice,
    HistoryRange,
    PriceErrorKind,
    PriceRecord,
    PriceSource,
    clamp_change_percent,
    from_epoch_millis,
    to_epoch_millis,
)


class TestPriceRecord:
    def test_valid_construction(self, sample_record):
        assert sample_record.symbol == "THYAO"
        assert sample_record.price == 321.5
        assert sample_record.source == PriceSource.API
        assert not sample_record.is_error

    def test_blank_symbol_rejected(self):
        with pytest.raises(ValidationError, match="blank"):
            PriceRecord(symbol="   ")

    def test_frozen(self, sample_record):
        with pytest.raises(ValidationError):
            sample_record.price = 1.0

    def test_unknown_fields_ignored(self):
        r = PriceRecord.model_validate({"symbol": "AFA", "price": 1.0, "obsolete": True})
        assert r.price == 1.0

    def test_json_round_trip(self, sample_record):
        assert PriceRecord.model_validate_json(sample_record.model_dump_json()) == sample_record

    def test_tagged(self, sample_record):
        tagged = sample_record.tagged(PriceSource.CACHE)
        assert tagged.source == PriceSource.CACHE
        assert sample_record.source == PriceSource.API

    def test_is_dated(self, sample_record):
        assert not sample_record.is_dated(date(2024, 3, 13))
        assert sample_record.is_dated(date(2024, 3, 14))
        assert not PriceRecord(symbol="X").is_dated(date(2024, 3, 14))


class TestFromQuote:
    def test_change_computed(self):
        r = PriceRecord.from_quote("THYAO", 321.5, 320.0, max_change_percent=25.0)
        assert r.change == 1.5
        assert r.change_percent == 0.47
        assert r.previous_close == 320.0

    def test_rounding(self):
        r = PriceRecord.from_quote("AFA", 1.123456789, 1.1, max_change_percent=25.0)
        assert r.price == 1.1235
        assert r.change == 0.0235
        assert r.change_percent == 2.13

    def test_clamped_up(self):
        r = PriceRecord.from_quote("X", 150.0, 100.0, max_change_percent=25.0)
        assert r.change_percent == 25.0
        assert r.change == 50.0

    def test_clamped_down(self):
        r = PriceRecord.from_quote("X", 50.0, 100.0, max_change_percent=25.0)
        assert r.change_percent == -25.0

    def test_zero_baseline(self):
        r = PriceRecord.from_quote("X", 5.0, 0.0, max_change_percent=25.0)
        assert r.change_percent == 0.0

    def test_extra_fields(self):
        r = PriceRecord.from_quote(
            "AFA", 1.0, 1.0, max_change_percent=25.0, currency="TRY", price_date=date(2024, 3, 13)
        )
        assert r.currency == "TRY"
        assert r.price_date == date(2024, 3, 13)


class TestFailure:
    def test_zero_priced_with_error(self):
        r = PriceRecord.failure("NOPE", "HTTP 404", PriceErrorKind.NETWORK)
        assert r.price == 0.0
        assert r.error == "HTTP 404"
        assert r.error_kind == PriceErrorKind.NETWORK
        assert r.is_error

    def test_default_kind(self):
        assert PriceRecord.failure("X", "oops").error_kind == PriceErrorKind.UNEXPECTED


@pytest.mark.parametrize(
    "value, ceiling, expected",
    [(10.0, 25.0, 10.0), (25.0, 25.0, 25.0), (30.0, 25.0, 25.0), (-40.0, 15.0, -15.0)],
)
def test_clamp_change_percent(value, ceiling, expected):
    assert clamp_change_percent("X", value, ceiling) == expected


class TestHistoricalPrice:
    def test_sort_key_from_date(self):
        p = HistoricalPrice(date=date(2024, 3, 13), price=1.0)
        assert p.sort_key == datetime(2024, 3, 13, tzinfo=timezone.utc)

    def test_sort_key_from_timestamp(self):
        moment = datetime(2024, 3, 13, 10, 15, tzinfo=timezone.utc)
        p = HistoricalPrice(date=date(2024, 3, 13), price=1.0, timestamp=moment)
        assert p.sort_key == moment


class TestCacheEntry:
    def test_invalidated(self, sample_record):
        assert CacheEntry(data=sample_record, timestamp=0).invalidated
        assert not CacheEntry(data=sample_record, timestamp=1).invalidated


def test_history_range_span():
    assert HistoryRange("1w").span.days == 7
    assert HistoryRange.FIVE_YEARS.span.days == 5 * 365


def test_epoch_millis_round_trip():
    moment = datetime(2024, 3, 13, 10, 0, tzinfo=timezone.utc)
    assert to_epoch_millis(moment) == 1710324000000
    assert from_epoch_millis(1710324000000) == moment


def test_batch_stats_defaults():
    assert BatchStats().model_dump() == {"live": 0, "cached": 0, "failed": 0, "total": 0}
