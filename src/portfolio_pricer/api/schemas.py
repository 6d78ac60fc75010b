"""API-specific request/response schemas (Pydantic v2)."""

from __future__ import annotations

from pydantic import BaseModel

from portfolio_pricer.core.models import BatchStats, HistoricalPrice, PriceRecord


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


# -- Health --


class HealthResponse(BaseModel):
    status: str
    version: str
    cache_backend: str
    cached_symbols: int


# -- Prices --


class PriceBatchResponse(BaseModel):
    """Records of one batch, in arrival order, with its counters."""

    items: list[PriceRecord]
    stats: BatchStats


class HistoryResponse(BaseModel):
    symbol: str
    range: str
    points: list[HistoricalPrice]


class ValidationResponse(BaseModel):
    symbol: str
    valid: bool
    record: PriceRecord | None = None


# -- Cache --


class CacheOperationResponse(BaseModel):
    operation: str
    affected: int
