"""TEFAS mutual-fund NAV adapter.

Fund NAVs are published once per business day, often hours after the
session, so the provider's "today" row is frequently 0 or missing. The
adapter therefore asks for a trailing window of daily NAVs and derives the
effective price from the most recent positive row, stamping the record with
that row's date.

Requests for the same fund code are coalesced while in flight, and a code
is not re-requested within ``min_request_interval`` seconds; inside that
interval the previous outcome is reused.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import date, datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from portfolio_pricer.core.config import PricingConfig, TefasConfig
from portfolio_pricer.core.exceptions import (
    FundNotFoundError,
    QuoteError,
    UpstreamFormatError,
    ZeroPriceError,
)
from portfolio_pricer.core.models import (
    FundZeroPricePolicy,
    HistoricalPrice,
    HistoryRange,
    PriceRecord,
    ProviderSymbol,
    Symbol,
    from_epoch_millis,
    utcnow,
)
from portfolio_pricer.prices.http import QuoteHttpClient

logger = logging.getLogger(__name__)

_HISTORY_PATH = "/api/DB/BindHistoryInfo"
_DATE_FORMAT = "%d.%m.%Y"
_FUND_CURRENCY = "TRY"
# TEFAS stamps rows at Istanbul midnight
_TEFAS_TZ = timezone(timedelta(hours=3))


class FundHistoryRow(BaseModel):
    """One daily row of the BindHistoryInfo response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    tarih: str = Field(alias="TARIH")
    fiyat: float | None = Field(None, alias="FIYAT")
    fon_kodu: str | None = Field(None, alias="FONKODU")
    fon_unvan: str | None = Field(None, alias="FONUNVAN")

    @property
    def millis(self) -> int:
        return int(self.tarih)

    @property
    def row_date(self) -> date:
        return from_epoch_millis(self.millis).astimezone(_TEFAS_TZ).date()

    @property
    def price(self) -> float:
        return self.fiyat or 0.0


class FundHistoryResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    data: list[FundHistoryRow] | None = None


def process_fund_history(
    rows: Sequence[FundHistoryRow],
    symbol: Symbol,
    policy: FundZeroPricePolicy = FundZeroPricePolicy.REPORT,
    max_change_percent: float = 25.0,
    now: datetime | None = None,
) -> PriceRecord | None:
    """Derive the latest fund record from a window of daily rows.

    The effective row is the newest row with a positive NAV; the row right
    before it is the baseline when its NAV is positive. When the newest row
    itself is 0:

    - REPORT returns a zero-priced ``zero_price`` record carrying the
      effective NAV as ``previous_close`` and its date as ``price_date``.
    - SUBSTITUTE returns the effective NAV as the price.

    Returns None for an empty window (fund not found).
    """
    if not rows:
        return None

    ordered = sorted(rows, key=lambda r: r.millis, reverse=True)
    positive = [r for r in ordered if r.price > 0]
    latest = ordered[0]
    name = next((r.fon_unvan for r in ordered if r.fon_unvan), None)
    history = [
        HistoricalPrice(date=r.row_date, price=round(r.price, 4))
        for r in reversed(ordered)
        if r.fiyat is not None
    ]
    common = {
        "last_update": now or utcnow(),
        "name": name,
        "currency": _FUND_CURRENCY,
        "historical_data": history,
    }

    if not positive:
        return ZeroPriceError(
            f"No published NAV for {symbol} in the requested window",
            context={"provider": "tefas", "symbol": symbol},
        ).to_record(symbol, price_date=latest.row_date, **common)

    effective = positive[0]
    after = ordered.index(effective) + 1
    previous = ordered[after] if after < len(ordered) and ordered[after].price > 0 else None

    if latest.price <= 0 and policy == FundZeroPricePolicy.REPORT:
        logger.warning(
            "%s: NAV for %s not yet published, last NAV %.4f from %s",
            symbol, latest.row_date, effective.price, effective.row_date,
        )
        return ZeroPriceError(
            f"NAV for {latest.row_date.isoformat()} not yet published; "
            f"last published {effective.price} on {effective.row_date.isoformat()}",
            context={"provider": "tefas", "symbol": symbol},
        ).to_record(
            symbol,
            previous_close=round(effective.price, 4),
            price_date=effective.row_date,
            **common,
        )

    if previous is None:
        return PriceRecord(
            symbol=symbol,
            price=round(effective.price, 4),
            price_date=effective.row_date,
            **common,
        )

    return PriceRecord.from_quote(
        symbol,
        effective.price,
        previous.price,
        max_change_percent=max_change_percent,
        price_date=effective.row_date,
        **common,
    )


class TefasFundAdapter:
    """Fetches fund NAVs from the TEFAS history endpoint.

    Parameters
    ----------
    config : TefasConfig
        Endpoint, window sizes and pacing.
    pricing : PricingConfig
        Default zero-price policy and change ceiling.
    client : QuoteHttpClient | None
        Injected transport (useful for testing). Built from config if None.
    clock : Callable[[], datetime]
        Source of "now" for request windows and rate-limit bookkeeping.
    """

    def __init__(
        self,
        config: TefasConfig | None = None,
        pricing: PricingConfig | None = None,
        client: QuoteHttpClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or TefasConfig()
        self._pricing = pricing or PricingConfig()
        self._clock = clock
        self._client = client or QuoteHttpClient(
            provider="tefas",
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            rate_limit=self._config.rate_limit,
            headers={
                "Accept": "application/json, text/javascript, */*; q=0.01",
                "X-Requested-With": "XMLHttpRequest",
            },
        )
        self._last_request: dict[str, float] = {}
        self._last_outcome: dict[str, list[FundHistoryRow] | QuoteError] = {}
        self._pending: dict[str, asyncio.Task[list[FundHistoryRow]]] = {}

    @property
    def name(self) -> str:
        return "tefas"

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    async def close(self) -> None:
        await self._client.close()

    def reset(self) -> None:
        """Forget rate-limit history and remembered outcomes."""
        self._last_request.clear()
        self._last_outcome.clear()
        self._pending.clear()
        logger.info("TEFAS request history cleared")

    async def fetch_latest(
        self,
        provider_symbol: ProviderSymbol,
        symbol: Symbol | None = None,
        zero_price_policy: FundZeroPricePolicy | None = None,
    ) -> PriceRecord | None:
        """Latest NAV record for a fund code.

        Returns None when the provider has no rows for the code, so callers
        can try another provider. Transport and format failures come back
        as error-tagged records.
        """
        code = provider_symbol
        symbol = symbol or code
        policy = zero_price_policy or self._pricing.fund_zero_price_policy

        try:
            rows = await self._rows(code)
        except FundNotFoundError:
            logger.warning("TEFAS: no data for %s", code)
            return None
        except QuoteError as e:
            logger.error("TEFAS quote failed for %s: %s", code, e)
            return e.to_record(symbol)

        return process_fund_history(
            rows,
            symbol,
            policy,
            max_change_percent=self._pricing.max_change_percent,
            now=self._clock(),
        )

    async def _rows(self, code: str) -> list[FundHistoryRow]:
        if not self._can_request(code) and code in self._last_outcome:
            logger.debug("TEFAS: %s requested recently, reusing last outcome", code)
            outcome = self._last_outcome[code]
            if isinstance(outcome, QuoteError):
                raise outcome
            return outcome

        task = self._pending.get(code)
        if task is None:
            task = asyncio.ensure_future(self._request_rows(code))
            self._pending[code] = task
        else:
            logger.debug("TEFAS: joining in-flight request for %s", code)
        return await asyncio.shield(task)

    def _can_request(self, code: str) -> bool:
        last = self._last_request.get(code)
        if last is None:
            return True
        return self._clock().timestamp() - last >= self._config.min_request_interval

    async def _request_rows(self, code: str) -> list[FundHistoryRow]:
        today = self._clock().astimezone(_TEFAS_TZ).date()
        start = today - timedelta(days=self._config.lookback_days)
        try:
            rows = await self._post_history(code, start, today, self._config.timeout)
            if not rows:
                raise FundNotFoundError(
                    f"TEFAS has no data for {code}",
                    context={"provider": "tefas", "symbol": code},
                )
            self._last_outcome[code] = rows
            return rows
        except QuoteError as e:
            self._last_outcome[code] = e
            raise
        finally:
            self._last_request[code] = self._clock().timestamp()
            self._pending.pop(code, None)

    async def _post_history(
        self, code: str, start: date, end: date, timeout: float
    ) -> list[FundHistoryRow]:
        raw = await self._client.post_json(
            _HISTORY_PATH,
            data={
                "fontip": self._config.fund_type,
                "bastarih": start.strftime(_DATE_FORMAT),
                "bittarih": end.strftime(_DATE_FORMAT),
                "fonkod": code,
            },
            timeout=timeout,
        )
        try:
            response = FundHistoryResponse.model_validate(raw)
        except ValidationError as e:
            raise UpstreamFormatError(
                f"Unexpected TEFAS payload for {code}",
                context={"provider": "tefas", "symbol": code, "reason": str(e)},
            ) from e
        return list(response.data or [])

    async def fetch_history(
        self, provider_symbol: ProviderSymbol, range_: HistoryRange
    ) -> list[HistoricalPrice]:
        """Daily NAV series for `range_`, oldest first.

        Windows longer than ``history_chunk_days`` are requested in
        consecutive chunks and merged by date.

        Raises:
            QuoteError: transport or format failure.
        """
        end = self._clock().astimezone(_TEFAS_TZ).date()
        start = end - range_.span
        chunk = timedelta(days=self._config.history_chunk_days)

        by_date: dict[date, HistoricalPrice] = {}
        cursor = start
        while cursor <= end:
            chunk_end = min(cursor + chunk - timedelta(days=1), end)
            rows = await self._post_history(
                provider_symbol, cursor, chunk_end, self._config.history_timeout
            )
            for row in rows:
                if row.fiyat is None:
                    continue
                by_date[row.row_date] = HistoricalPrice(date=row.row_date, price=round(row.price, 4))
            cursor = chunk_end + timedelta(days=1)

        return [by_date[d] for d in sorted(by_date)]
