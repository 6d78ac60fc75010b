"""Custom exception hierarchy for portfolio-pricer."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from portfolio_pricer.core.models import PriceErrorKind

if TYPE_CHECKING:
    from portfolio_pricer.core.models import PriceRecord


class PricerError(Exception):
    """Base exception for all portfolio-pricer errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(PricerError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str — the config field that failed validation
        value: Any — the invalid value (redacted for secrets)
    """


class QuoteError(PricerError):
    """A quote could not be produced for a symbol.

    Policy: never crosses an adapter's public boundary. Adapters convert it
    into an error-tagged PriceRecord with `to_record()` so one bad symbol
    cannot interrupt a batch.

    Context keys:
        symbol: str — the symbol being priced
        provider: str — "yahoo", "tefas" or "swissquote"
    """

    kind: PriceErrorKind = PriceErrorKind.UNEXPECTED

    def to_record(self, symbol: str, **fields: Any) -> PriceRecord:
        """Build the zero-priced failure record for `symbol`."""
        from portfolio_pricer.core.models import PriceRecord

        return PriceRecord.failure(symbol, str(self), self.kind, **fields)


class TransportError(QuoteError):
    """Network failure, timeout or non-success HTTP status.

    Context keys:
        url: str — the URL that was being fetched
        status_code: int | None — HTTP status if a response arrived
    """

    kind = PriceErrorKind.NETWORK


class UpstreamFormatError(QuoteError):
    """Upstream JSON did not match the expected shape.

    Context keys:
        url: str — the URL whose payload was rejected
        reason: str — validation message
    """

    kind = PriceErrorKind.MALFORMED


class FundNotFoundError(QuoteError):
    """The fund provider has no rows for a code.

    Represented as an absent result (None) at the adapter boundary so the
    resolver can fall through to another provider.
    """

    kind = PriceErrorKind.NOT_FOUND


class ZeroPriceError(QuoteError):
    """The fund exists but today's NAV has not been published yet."""

    kind = PriceErrorKind.ZERO_PRICE


class DependencyUnavailableError(QuoteError):
    """An input of a derived instrument failed or returned no usable price.

    Context keys:
        leg: str — the input that failed
    """

    kind = PriceErrorKind.DEPENDENCY_UNAVAILABLE


class CacheError(PricerError):
    """Durable price cache operation failed.

    Policy: raise immediately. The cache is the only persisted state.

    Context keys:
        operation: str — "get", "set", "clear", etc.
        symbol: str | None — the key involved
    """
