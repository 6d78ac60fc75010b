"""Cache freshness rules per asset type.

The policy is pure given an injected "now": every public method accepts an
optional ``now`` and only falls back to the clock when it is omitted.

- CURRENCY / COMMODITY: fresh for ``cache_duration_seconds``.
- STOCK: inside market hours, same short window. Outside market hours, a
  same-day entry is fresh only if it was written after the close, so the
  first check after the close refetches once to capture the closing print.
- FUND: fresh while the record's ``price_date`` is the trading date expected
  for "now" (today on weekdays, the preceding Friday on weekends). Records
  without ``price_date`` fall back to a same-day comparison.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone

from portfolio_pricer.core.config import FreshnessConfig
from portfolio_pricer.core.models import AssetType, PriceRecord, from_epoch_millis, utcnow
from portfolio_pricer.prices.classifier import classify

Clock = Callable[[], datetime]

_SATURDAY = 5
_SUNDAY = 6


class FreshnessPolicy:
    """Decides whether a cached record may be served without a new fetch."""

    def __init__(
        self,
        config: FreshnessConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._config = config or FreshnessConfig()
        self._clock = clock
        self._market_tz = timezone(timedelta(hours=self._config.market_utc_offset_hours))
        self._window_ms = self._config.cache_duration_seconds * 1000

    def _now(self, now: datetime | None) -> datetime:
        return (now or self._clock()).astimezone(timezone.utc)

    def local_date(self, moment: datetime) -> date:
        """Calendar date of `moment` on the exchange's wall clock."""
        return moment.astimezone(self._market_tz).date()

    def is_market_hours(self, moment: datetime | None = None) -> bool:
        """True on weekdays between open and close-plus-grace, both inclusive."""
        utc = self._now(moment)
        if utc.weekday() >= _SATURDAY:
            return False
        t = utc.time().replace(tzinfo=None)
        return self._config.market_open_utc <= t <= self._config.market_close_utc

    def expected_fund_date(self, now: datetime | None = None) -> date:
        """The NAV date a fresh fund record must carry at `now`."""
        today = self.local_date(self._now(now))
        if today.weekday() == _SATURDAY:
            return today - timedelta(days=1)
        if today.weekday() == _SUNDAY:
            return today - timedelta(days=2)
        return today

    def is_fund_price_date_valid(self, price_date: date, now: datetime | None = None) -> bool:
        return price_date == self.expected_fund_date(now)

    def is_valid(
        self,
        symbol: str,
        cached_timestamp: int,
        cached_record: PriceRecord | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Whether the cache entry for `symbol` written at `cached_timestamp`
        (epoch millis) may be served as-is."""
        if cached_timestamp <= 0:
            return False

        current = self._now(now)
        written = from_epoch_millis(cached_timestamp)
        asset_type = classify(symbol)

        if asset_type == AssetType.FUND:
            if cached_record is not None and cached_record.price_date is not None:
                return self.is_fund_price_date_valid(cached_record.price_date, current)
            return self.local_date(written) == self.local_date(current)

        within_window = self._age_ms(current, cached_timestamp) < self._window_ms

        if asset_type == AssetType.STOCK:
            if self.is_market_hours(current):
                return within_window
            same_day = self.local_date(written) == self.local_date(current)
            return same_day and not self.is_market_hours(written)

        return within_window

    @staticmethod
    def _age_ms(now: datetime, cached_timestamp: int) -> float:
        return now.timestamp() * 1000 - cached_timestamp
