"""Derived instruments — prices computed from independently fetched inputs.

A derived instrument is a formula over named legs. The calculator fetches
every leg, refuses to produce a price if any leg is unusable, and applies
the same formula to the legs' previous closes to get the baseline:

    GAUTRY = XAU/USD spot × USDTRY ÷ 31.1035   (TRY per gram of gold)

A spot leg has no previous close of its own; a leg may name a baseline
instrument whose daily change percent is used to back one out.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from portfolio_pricer.core.exceptions import DependencyUnavailableError
from portfolio_pricer.core.models import (
    HistoricalPrice,
    PriceRecord,
    ProviderSymbol,
    Symbol,
    utcnow,
)

logger = logging.getLogger(__name__)

UNITS_PER_OUNCE = 31.1035  # grams per troy ounce


class LegSource(StrEnum):
    """Which adapter quotes a leg."""

    EQUITY = "equity"
    SPOT = "spot"


@dataclass(frozen=True)
class Leg:
    """One input of a derived instrument.

    Attributes:
        name: Key the formula reads the leg's value under.
        source: Adapter that quotes `provider_symbol`.
        provider_symbol: Instrument as the adapter expects it.
        baseline_symbol: Equity-adapter instrument whose change percent
            supplies this leg's previous close.
        history_symbol: Equity-adapter instrument charted in place of this
            leg when its own source has no history.
    """

    name: str
    source: LegSource
    provider_symbol: ProviderSymbol
    baseline_symbol: ProviderSymbol | None = None
    history_symbol: ProviderSymbol | None = None


Formula = Callable[[Mapping[str, float]], float]
LegFetcher = Callable[[LegSource, ProviderSymbol], Awaitable[PriceRecord]]


@dataclass(frozen=True)
class DerivedInstrument:
    symbol: Symbol
    legs: tuple[Leg, ...]
    formula: Formula
    name: str | None = None
    currency: str | None = None


def per_gram(values: Mapping[str, float]) -> float:
    """Ounce-denominated metal price converted to a gram price in the FX leg's currency."""
    return values["metal"] * values["fx"] / UNITS_PER_OUNCE


DERIVED_INSTRUMENTS: dict[Symbol, DerivedInstrument] = {
    "GAUTRY": DerivedInstrument(
        symbol="GAUTRY",
        legs=(
            Leg("metal", LegSource.SPOT, "XAU/USD", baseline_symbol="GC=F", history_symbol="GC=F"),
            Leg("fx", LegSource.EQUITY, "USDTRY=X"),
        ),
        formula=per_gram,
        name="Gram Altın",
        currency="TRY",
    ),
    "XAGTRY": DerivedInstrument(
        symbol="XAGTRY",
        legs=(
            Leg("metal", LegSource.SPOT, "XAG/USD", baseline_symbol="SI=F", history_symbol="SI=F"),
            Leg("fx", LegSource.EQUITY, "USDTRY=X"),
        ),
        formula=per_gram,
        name="Gram Gümüş",
        currency="TRY",
    ),
}


def is_derived(symbol: Symbol) -> bool:
    return symbol in DERIVED_INSTRUMENTS


def with_baseline(record: PriceRecord, change_percent: float) -> PriceRecord:
    """Back out a previous close for `record` from an external change percent."""
    factor = 1 + change_percent / 100
    if factor <= 0:
        return record
    previous = record.price / factor
    return record.model_copy(
        update={
            "previous_close": round(previous, 4),
            "change": round(record.price - previous, 4),
            "change_percent": round(change_percent, 2),
        }
    )


class DerivedPriceCalculator:
    """Combines leg quotes into a derived record.

    Parameters
    ----------
    max_change_percent : float
        Ceiling for the derived change percent. Tighter than a single
        quote's, since errors in two inputs compound.
    """

    def __init__(
        self,
        max_change_percent: float = 15.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._max_change_percent = max_change_percent
        self._clock = clock

    async def compute(self, instrument: DerivedInstrument, fetch: LegFetcher) -> PriceRecord:
        """Fetch all legs concurrently, wait for every one, then combine."""
        records = await asyncio.gather(*(self._fetch_leg(leg, fetch) for leg in instrument.legs))
        return self.combine(instrument, {leg.name: r for leg, r in zip(instrument.legs, records)})

    async def _fetch_leg(self, leg: Leg, fetch: LegFetcher) -> PriceRecord:
        record = await fetch(leg.source, leg.provider_symbol)
        if leg.baseline_symbol is None or record.is_error:
            return record
        baseline = await fetch(LegSource.EQUITY, leg.baseline_symbol)
        if baseline.is_error:
            logger.warning(
                "%s: baseline %s unavailable, %s carries zero change",
                leg.provider_symbol, leg.baseline_symbol, leg.name,
            )
            return record
        return with_baseline(record, baseline.change_percent)

    def combine(
        self, instrument: DerivedInstrument, legs: Mapping[str, PriceRecord]
    ) -> PriceRecord:
        """Apply the formula to current and previous leg values.

        Any leg that failed or has a non-positive price turns the whole
        result into a ``dependency_unavailable`` error record.
        """
        for leg in instrument.legs:
            record = legs.get(leg.name)
            if record is None or record.is_error or record.price <= 0:
                reason = record.error if record is not None and record.error else "no usable price"
                logger.warning(
                    "%s: input %s unavailable: %s", instrument.symbol, leg.provider_symbol, reason
                )
                return DependencyUnavailableError(
                    f"Input {leg.provider_symbol} unavailable: {reason}",
                    context={"symbol": instrument.symbol, "leg": leg.provider_symbol},
                ).to_record(
                    instrument.symbol,
                    name=instrument.name,
                    currency=instrument.currency,
                    last_update=self._clock(),
                )

        current = instrument.formula({n: r.price for n, r in legs.items()})
        previous = instrument.formula(
            {n: r.previous_close or r.price for n, r in legs.items()}
        )
        dates = [r.price_date for r in legs.values() if r.price_date is not None]

        return PriceRecord.from_quote(
            instrument.symbol,
            current,
            previous,
            max_change_percent=self._max_change_percent,
            price_date=min(dates) if dates else None,
            last_update=self._clock(),
            name=instrument.name,
            currency=instrument.currency,
        )

    @staticmethod
    def combine_history(
        instrument: DerivedInstrument, series: Mapping[str, list[HistoricalPrice]]
    ) -> list[HistoricalPrice]:
        """Formula over leg histories, keeping only points present in every leg."""
        indexed = [
            {p.sort_key: p for p in series.get(leg.name, [])} for leg in instrument.legs
        ]
        if not indexed:
            return []
        common = set(indexed[0])
        for points in indexed[1:]:
            common &= set(points)

        result = []
        for key in sorted(common):
            values = {
                leg.name: points[key].price for leg, points in zip(instrument.legs, indexed)
            }
            if any(v <= 0 for v in values.values()):
                continue
            first = indexed[0][key]
            result.append(
                HistoricalPrice(
                    date=first.date,
                    price=round(instrument.formula(values), 4),
                    timestamp=first.timestamp,
                )
            )
        return result
