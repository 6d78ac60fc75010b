"""Pydantic data models — the system's type contracts."""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# --- Type Aliases ---

Symbol = str
ProviderSymbol = str

PRICE_DECIMALS = 4
PERCENT_DECIMALS = 2

# --- Enumerations ---


class AssetType(StrEnum):
    """Asset classes a holding can belong to, derived from the ticker shape."""

    CURRENCY = "CURRENCY"
    STOCK = "STOCK"
    FUND = "FUND"
    COMMODITY = "COMMODITY"


class PriceSource(StrEnum):
    """Where an emitted record came from. Set by the resolver only."""

    API = "api"
    CACHE = "cache"


class PriceErrorKind(StrEnum):
    """Machine-readable failure category attached to error records."""

    NETWORK = "network"
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    ZERO_PRICE = "zero_price"
    DEPENDENCY_UNAVAILABLE = "dependency_unavailable"
    UNEXPECTED = "unexpected"


class HistoryRange(StrEnum):
    """Chart ranges supported by fetch_history."""

    ONE_DAY = "1d"
    ONE_WEEK = "1w"
    ONE_MONTH = "1mo"
    THREE_MONTHS = "3mo"
    SIX_MONTHS = "6mo"
    ONE_YEAR = "1y"
    THREE_YEARS = "3y"
    FIVE_YEARS = "5y"

    @property
    def span(self) -> timedelta:
        """Calendar length of the range."""
        return _RANGE_SPANS[self]


_RANGE_SPANS: dict[HistoryRange, timedelta] = {
    HistoryRange.ONE_DAY: timedelta(days=1),
    HistoryRange.ONE_WEEK: timedelta(days=7),
    HistoryRange.ONE_MONTH: timedelta(days=30),
    HistoryRange.THREE_MONTHS: timedelta(days=91),
    HistoryRange.SIX_MONTHS: timedelta(days=182),
    HistoryRange.ONE_YEAR: timedelta(days=365),
    HistoryRange.THREE_YEARS: timedelta(days=3 * 365),
    HistoryRange.FIVE_YEARS: timedelta(days=5 * 365),
}


class FundZeroPricePolicy(StrEnum):
    """What to do when a fund's latest published NAV is 0.

    REPORT keeps the literal zero and flags the record (batch display).
    SUBSTITUTE serves the most recent positive NAV (holding validation).
    """

    REPORT = "report"
    SUBSTITUTE = "substitute"


class CacheBackend(StrEnum):
    """Supported durable cache backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


# --- Time helpers ---


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_millis(moment: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(moment.timestamp() * 1000)


def from_epoch_millis(millis: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


# --- Price Models ---


class HistoricalPrice(BaseModel):
    """One point of a price series.

    Intraday series carry the bar's `timestamp`; daily and weekly series
    are keyed by `date` alone.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    date: date
    price: float
    timestamp: datetime | None = None

    @property
    def sort_key(self) -> datetime:
        if self.timestamp is not None:
            return self.timestamp
        return datetime(self.date.year, self.date.month, self.date.day, tzinfo=timezone.utc)


class PriceRecord(BaseModel):
    """The canonical price record produced by every adapter.

    `symbol` is always the ticker the caller asked for, never a provider's
    transformed form. A populated `error` marks a failed-but-returned result.
    Unknown fields are ignored so older cache rows keep loading.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    symbol: Symbol
    price: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0
    previous_close: float | None = None
    price_date: date | None = None
    last_update: datetime = Field(default_factory=utcnow)
    name: str | None = None
    currency: str | None = None
    historical_data: list[HistoricalPrice] | None = None
    source: PriceSource | None = None
    error: str | None = None
    error_kind: PriceErrorKind | None = None

    @field_validator("symbol")
    @classmethod
    def symbol_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("symbol must not be blank")
        return v.strip()

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def is_dated(self, today: date) -> bool:
        """True when the effective price belongs to an earlier day than `today`."""
        return self.price_date is not None and self.price_date < today

    def tagged(self, source: PriceSource) -> PriceRecord:
        """Return a copy carrying the resolver's source tag."""
        return self.model_copy(update={"source": source})

    @classmethod
    def failure(
        cls,
        symbol: Symbol,
        message: str,
        kind: PriceErrorKind = PriceErrorKind.UNEXPECTED,
        **fields: Any,
    ) -> PriceRecord:
        """Zero-priced record describing why `symbol` could not be priced."""
        return cls(
            symbol=symbol,
            price=fields.pop("price", 0.0),
            change=0.0,
            change_percent=0.0,
            error=message,
            error_kind=kind,
            **fields,
        )

    @classmethod
    def from_quote(
        cls,
        symbol: Symbol,
        price: float,
        previous_close: float,
        *,
        max_change_percent: float,
        **fields: Any,
    ) -> PriceRecord:
        """Build a record from a current and a baseline value.

        The percentage change is clamped to ±`max_change_percent`, keeping its
        sign, to suppress spikes caused by bad ticks or a wrong-session
        baseline.
        """
        change = price - previous_close
        change_percent = (change / previous_close) * 100 if previous_close else 0.0
        change_percent = clamp_change_percent(symbol, change_percent, max_change_percent)
        return cls(
            symbol=symbol,
            price=round(price, PRICE_DECIMALS),
            change=round(change, PRICE_DECIMALS),
            change_percent=round(change_percent, PERCENT_DECIMALS),
            previous_close=round(previous_close, PRICE_DECIMALS),
            **fields,
        )


def clamp_change_percent(symbol: Symbol, change_percent: float, ceiling: float) -> float:
    """Limit |change_percent| to `ceiling`, preserving sign."""
    if abs(change_percent) > ceiling:
        logger.warning(
            "%s: implausible change of %.2f%%, clamping to ±%.2f%%",
            symbol, change_percent, ceiling,
        )
        return math.copysign(ceiling, change_percent)
    return change_percent


class CacheEntry(BaseModel):
    """A cached record and the epoch-millis moment it was written.

    A timestamp of 0 marks an entry invalidated by the resolver; it is kept
    for inspection but never served as fresh.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    data: PriceRecord
    timestamp: int

    @property
    def invalidated(self) -> bool:
        return self.timestamp <= 0


class BatchStats(BaseModel):
    """Per-batch counters exposed to callers alongside the records."""

    live: int = 0
    cached: int = 0
    failed: int = 0
    total: int = 0


class CacheStats(BaseModel):
    """Snapshot of the durable cache and the fund adapter's request table."""

    total: int = 0
    valid: int = 0
    invalidated: int = 0
    fund_requests_in_flight: int = 0
