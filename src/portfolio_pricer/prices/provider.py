"""Quote adapter protocols — the provider-agnostic interface layer.

Architecture
------------
Every upstream provider is wrapped by one adapter that knows only its own
wire format and endpoint:

    Upstream JSON → schema model → Adapter → PriceRecord → PriceResolver

- **HistoryAdapter** produces an oldest→newest series for charting. Every
  adapter is one; a live-only feed answers with an empty list.
- **QuoteAdapter** returns a PriceRecord for any symbol it is asked about.
  Expected failures come back as error-tagged records, never as exceptions.
- **FundQuoteAdapter** may additionally answer "not found" (None), so the
  resolver can fall through to another provider. It owns per-code request
  history, which the resolver resets and reports on.

The ``symbol`` argument is the caller's ticker; adapters stamp it on the
record instead of their internal provider symbol.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from portfolio_pricer.core.models import (
    FundZeroPricePolicy,
    HistoricalPrice,
    HistoryRange,
    PriceRecord,
    ProviderSymbol,
    Symbol,
)


@runtime_checkable
class HistoryAdapter(Protocol):
    """Produces an oldest→newest price series for charting.

    Raises QuoteError subclasses on failure; an unknown symbol yields an
    empty list.
    """

    async def fetch_history(
        self, provider_symbol: ProviderSymbol, range_: HistoryRange
    ) -> list[HistoricalPrice]: ...


@runtime_checkable
class QuoteAdapter(HistoryAdapter, Protocol):
    """Produces a canonical record for one provider symbol."""

    @property
    def name(self) -> str: ...

    async def fetch_latest(
        self, provider_symbol: ProviderSymbol, symbol: Symbol | None = None
    ) -> PriceRecord: ...

    async def close(self) -> None: ...


@runtime_checkable
class FundQuoteAdapter(HistoryAdapter, Protocol):
    """Fund lookups: None means the code is unknown to the provider."""

    @property
    def name(self) -> str: ...

    @property
    def in_flight(self) -> int: ...

    async def fetch_latest(
        self,
        provider_symbol: ProviderSymbol,
        symbol: Symbol | None = None,
        zero_price_policy: FundZeroPricePolicy | None = None,
    ) -> PriceRecord | None: ...

    def reset(self) -> None: ...

    async def close(self) -> None: ...
