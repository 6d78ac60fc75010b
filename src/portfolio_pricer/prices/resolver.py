"""Price resolver — cache-first orchestration of a batch of symbols.

For each distinct symbol the resolver either serves a fresh cache entry
immediately or schedules a live fetch on the scheduler of its provider
group (funds on the single-concurrency fund queue, everything else on the
general queue). Live results are tagged, emitted as they complete and
written back to the cache unless they are errors, a fund's unpublished-NAV
state, or a derived instrument excluded from caching.

Usage::

    async with await PriceResolver.from_config(config) as resolver:
        batch = resolver.resolve_batch(["THYAO", "AFA", "USDTRY"])
        async for record in batch:
            ...
        print(batch.stats)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from datetime import datetime
from functools import partial
from typing import Any

from portfolio_pricer.core.config import PricerConfig
from portfolio_pricer.core.exceptions import CacheError
from portfolio_pricer.core.models import (
    AssetType,
    BatchStats,
    CacheStats,
    FundZeroPricePolicy,
    HistoricalPrice,
    HistoryRange,
    PriceErrorKind,
    PriceRecord,
    PriceSource,
    ProviderSymbol,
    Symbol,
    to_epoch_millis,
    utcnow,
)
from portfolio_pricer.prices.classifier import (
    HOME_CURRENCY,
    classify,
    is_home_currency,
    normalize,
    transform,
)
from portfolio_pricer.prices.derived import (
    DERIVED_INSTRUMENTS,
    DerivedPriceCalculator,
    Leg,
    LegSource,
    is_derived,
)
from portfolio_pricer.prices.freshness import FreshnessPolicy
from portfolio_pricer.prices.provider import FundQuoteAdapter, QuoteAdapter
from portfolio_pricer.prices.scheduler import BoundedRequestScheduler
from portfolio_pricer.prices.store import PriceCache, create_cache
from portfolio_pricer.prices.swissquote import (
    HISTORY_PROXIES,
    SPOT_INSTRUMENTS,
    SpotMetalAdapter,
    split_instrument,
)
from portfolio_pricer.prices.tefas import TefasFundAdapter
from portfolio_pricer.prices.yahoo import YahooQuoteProvider

logger = logging.getLogger(__name__)

_DONE = object()


class _SharedFetches:
    """Live quotes fetched during one batch, keyed by adapter and provider symbol.

    A derived instrument's inputs and a directly requested symbol that maps
    to the same provider symbol share one request.
    """

    def __init__(self, yahoo: QuoteAdapter, spot: QuoteAdapter) -> None:
        self._yahoo = yahoo
        self._spot = spot
        self._tasks: dict[tuple[LegSource, ProviderSymbol], asyncio.Future[PriceRecord]] = {}

    async def get(self, source: LegSource, provider_symbol: ProviderSymbol) -> PriceRecord:
        if source == LegSource.SPOT:
            # XAUUSD and XAU/USD are the same instrument
            provider_symbol = "/".join(split_instrument(provider_symbol))
        key = (source, provider_symbol)
        task = self._tasks.get(key)
        if task is None:
            adapter = self._spot if source == LegSource.SPOT else self._yahoo
            task = asyncio.ensure_future(adapter.fetch_latest(provider_symbol))
            self._tasks[key] = task
        return await asyncio.shield(task)


class PriceBatch:
    """Records of one batch, yielded in arrival order, plus its counters.

    Iterate once with ``async for``; ``stats`` is complete after iteration
    ends. ``collect()`` drains the batch into a list.
    """

    def __init__(self, resolver: PriceResolver, symbols: list[Symbol]) -> None:
        self._resolver = resolver
        self.symbols = symbols
        self.stats = BatchStats(total=len(symbols))
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[PriceRecord]:
        if self._consumed:
            raise RuntimeError("PriceBatch can only be iterated once")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[PriceRecord]:
        arrivals: asyncio.Queue[Any] = asyncio.Queue()
        runner = asyncio.ensure_future(
            self._resolver._run_batch(self.symbols, self.stats, arrivals.put_nowait)
        )
        runner.add_done_callback(lambda _: arrivals.put_nowait(_DONE))
        try:
            while True:
                item = await arrivals.get()
                if item is _DONE:
                    break
                yield item
        finally:
            # A batch always runs to completion, even if the consumer stops early.
            if not runner.done():
                await runner
        runner.result()

    async def collect(self) -> list[PriceRecord]:
        return [record async for record in self]


class PriceResolver:
    """Cache-first price orchestration over the three quote adapters.

    Parameters
    ----------
    cache : PriceCache
        Durable cache; the resolver is its only writer.
    config : PricerConfig | None
        Full configuration. Defaults are used when None.
    yahoo, spot : QuoteAdapter | None
        Equity/FX and spot-metal adapters. Built from config if None.
    tefas : FundQuoteAdapter | None
        Fund adapter. Built from config if None.
    clock : Callable[[], datetime]
        Source of "now" for freshness checks and cache timestamps.
    """

    def __init__(
        self,
        cache: PriceCache,
        config: PricerConfig | None = None,
        *,
        yahoo: QuoteAdapter | None = None,
        tefas: FundQuoteAdapter | None = None,
        spot: QuoteAdapter | None = None,
        freshness: FreshnessPolicy | None = None,
        derived: DerivedPriceCalculator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or PricerConfig()
        self._cache = cache
        self._clock = clock
        cfg = self._config
        self._yahoo = yahoo or YahooQuoteProvider(cfg.yahoo, cfg.pricing, clock=clock)
        self._tefas = tefas or TefasFundAdapter(cfg.tefas, cfg.pricing, clock=clock)
        self._spot = spot or SpotMetalAdapter(
            cfg.swissquote,
            clock=clock,
            market_utc_offset_hours=cfg.freshness.market_utc_offset_hours,
        )
        self._freshness = freshness or FreshnessPolicy(cfg.freshness, clock=clock)
        self._derived = derived or DerivedPriceCalculator(
            cfg.pricing.derived_max_change_percent, clock=clock
        )

    @classmethod
    async def from_config(cls, config: PricerConfig) -> PriceResolver:
        """Build a resolver with the configured cache backend, initialized."""
        cache = await create_cache(config.cache)
        return cls(cache, config)

    @property
    def cache(self) -> PriceCache:
        return self._cache

    @property
    def freshness(self) -> FreshnessPolicy:
        return self._freshness

    async def __aenter__(self) -> PriceResolver:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close every adapter's HTTP client and the cache."""
        await self._yahoo.close()
        await self._tefas.close()
        await self._spot.close()
        await self._cache.close()

    # --- Batch resolution ---

    def resolve_batch(self, symbols: Iterable[str]) -> PriceBatch:
        """Resolve `symbols` (de-duplicated after normalization).

        Returns a PriceBatch; nothing runs until it is iterated.
        """
        unique = list(dict.fromkeys(normalize(s) for s in symbols if s and s.strip()))
        return PriceBatch(self, unique)

    async def _run_batch(
        self,
        symbols: list[Symbol],
        stats: BatchStats,
        emit: Callable[[PriceRecord], None],
    ) -> None:
        tefas_cfg = self._config.tefas
        yahoo_cfg = self._config.yahoo
        fund_queue: BoundedRequestScheduler[PriceRecord] = BoundedRequestScheduler(
            "tefas", tefas_cfg.concurrency, tefas_cfg.dispatch_delay
        )
        quote_queue: BoundedRequestScheduler[PriceRecord] = BoundedRequestScheduler(
            "quotes", yahoo_cfg.concurrency, yahoo_cfg.dispatch_delay
        )
        fetches = _SharedFetches(self._yahoo, self._spot)

        def emit_cached(record: PriceRecord) -> None:
            stats.cached += 1
            emit(record.tagged(PriceSource.CACHE))

        def emit_live(record: PriceRecord) -> None:
            stats.live += 1
            if record.is_error:
                stats.failed += 1
            emit(record)

        for symbol in symbols:
            if is_home_currency(symbol):
                emit_cached(self._home_currency_record())
                continue

            entry = await self._cache.get(symbol)
            if entry is not None and self._freshness.is_valid(symbol, entry.timestamp, entry.data):
                logger.debug("%s served from cache", symbol)
                emit_cached(entry.data)
                continue

            asset_type = classify(symbol)
            queue = fund_queue if asset_type == AssetType.FUND else quote_queue
            queue.add(symbol, partial(self._fetch_and_store, symbol, asset_type, fetches))

        await asyncio.gather(fund_queue.start(emit_live), quote_queue.start(emit_live))

        for queue in (fund_queue, quote_queue):
            for symbol, exc in queue.failures.items():
                emit_live(
                    PriceRecord.failure(
                        symbol,
                        f"Unexpected error: {exc}",
                        PriceErrorKind.UNEXPECTED,
                        source=PriceSource.API,
                    )
                )

        logger.info(
            "Batch of %d resolved: %d live, %d cached, %d failed",
            stats.total, stats.live, stats.cached, stats.failed,
        )

    async def _fetch_and_store(
        self, symbol: Symbol, asset_type: AssetType, fetches: _SharedFetches
    ) -> PriceRecord:
        record = (await self._fetch_live(symbol, asset_type, fetches)).tagged(PriceSource.API)
        if self._should_cache(symbol, record):
            try:
                await self._cache.set(symbol, record, to_epoch_millis(self._clock()))
                logger.debug("%s cached at %.4f", symbol, record.price)
            except CacheError as e:
                logger.error("Failed to cache %s: %s", symbol, e)
        return record

    async def _fetch_live(
        self,
        symbol: Symbol,
        asset_type: AssetType,
        fetches: _SharedFetches,
        zero_price_policy: FundZeroPricePolicy | None = None,
    ) -> PriceRecord:
        if asset_type == AssetType.FUND:
            record = await self._tefas.fetch_latest(symbol, symbol, zero_price_policy)
            if record is not None:
                return record
            logger.info("%s is not a TEFAS fund, trying %s", symbol, transform(symbol))

        if is_derived(symbol):
            return await self._derived.compute(DERIVED_INSTRUMENTS[symbol], fetches.get)

        if symbol in SPOT_INSTRUMENTS:
            record = await fetches.get(LegSource.SPOT, symbol)
        else:
            record = await fetches.get(LegSource.EQUITY, transform(symbol))
        return record.model_copy(update={"symbol": symbol})

    def _should_cache(self, symbol: Symbol, record: PriceRecord) -> bool:
        if record.is_error:
            return False
        if is_derived(symbol) and not self._config.pricing.cache_derived:
            return False
        return True

    def _home_currency_record(self) -> PriceRecord:
        now = self._clock()
        return PriceRecord(
            symbol=HOME_CURRENCY,
            price=1.0,
            previous_close=1.0,
            price_date=self._freshness.local_date(now),
            last_update=now,
            name="Türk Lirası",
            currency=HOME_CURRENCY,
        )

    # --- Single-symbol operations ---

    async def validate_symbol(self, symbol: str) -> PriceRecord | None:
        """Price one symbol for a newly added holding, bypassing the cache.

        A fund whose latest NAV is unpublished is priced at its last
        published NAV. Returns None if the symbol cannot be priced.
        """
        s = normalize(symbol)
        if not s:
            return None
        if is_home_currency(s):
            return self._home_currency_record().tagged(PriceSource.API)

        fetches = _SharedFetches(self._yahoo, self._spot)
        record = await self._fetch_live(
            s, classify(s), fetches, FundZeroPricePolicy.SUBSTITUTE
        )
        if record.is_error or record.price <= 0:
            logger.warning("%s failed validation: %s", s, record.error or "no price")
            return None
        return record.tagged(PriceSource.API)

    async def fetch_history(self, symbol: str, range_: HistoryRange) -> list[HistoricalPrice]:
        """Price series for charting, oldest first.

        Raises:
            QuoteError: the provider request failed.
        """
        s = normalize(symbol)
        if is_home_currency(s):
            return []

        if is_derived(s):
            instrument = DERIVED_INSTRUMENTS[s]
            histories = await asyncio.gather(
                *(self._leg_history(leg, range_) for leg in instrument.legs)
            )
            return self._derived.combine_history(
                instrument, {leg.name: h for leg, h in zip(instrument.legs, histories)}
            )

        if s in HISTORY_PROXIES:
            return await self._yahoo.fetch_history(HISTORY_PROXIES[s], range_)

        if classify(s) == AssetType.FUND:
            history = await self._tefas.fetch_history(s, range_)
            if history:
                return history
            logger.info("No TEFAS history for %s, trying %s", s, transform(s))

        return await self._yahoo.fetch_history(transform(s), range_)

    async def _leg_history(self, leg: Leg, range_: HistoryRange) -> list[HistoricalPrice]:
        if leg.history_symbol is not None:
            return await self._yahoo.fetch_history(leg.history_symbol, range_)
        if leg.source == LegSource.SPOT:
            return await self._spot.fetch_history(leg.provider_symbol, range_)
        return await self._yahoo.fetch_history(leg.provider_symbol, range_)

    # --- Cache management ---

    async def is_cache_valid(
        self,
        symbol: str,
        timestamp: int | None = None,
        record: PriceRecord | None = None,
    ) -> bool:
        """Whether `symbol` would be served from cache right now.

        With `timestamp` (and optionally `record`) the decision is made for
        that entry without reading the cache.
        """
        s = normalize(symbol)
        if is_home_currency(s):
            return True
        if timestamp is not None:
            return self._freshness.is_valid(s, timestamp, record)
        entry = await self._cache.get(s)
        return entry is not None and self._freshness.is_valid(s, entry.timestamp, entry.data)

    async def invalidate_cache(self) -> int:
        """Mark every entry stale without deleting it. Returns the entry count."""
        count = await self._cache.invalidate()
        logger.info("Invalidated %d cache entries", count)
        return count

    async def clear_cache(self) -> int:
        """Delete every entry and reset the fund adapter's request history."""
        count = await self._cache.clear()
        self._tefas.reset()
        logger.info("Cleared %d cache entries", count)
        return count

    async def cache_stats(self) -> CacheStats:
        entries = await self._cache.items()
        now = self._clock()
        valid = sum(
            1
            for symbol, entry in entries
            if self._freshness.is_valid(symbol, entry.timestamp, entry.data, now=now)
        )
        return CacheStats(
            total=len(entries),
            valid=valid,
            invalidated=sum(1 for _, entry in entries if entry.invalidated),
            fund_requests_in_flight=self._tefas.in_flight,
        )
