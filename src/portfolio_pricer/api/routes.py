"""FastAPI route definitions for the portfolio-pricer API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

import portfolio_pricer
from portfolio_pricer.api.deps import get_config, get_resolver
from portfolio_pricer.api.schemas import (
    CacheOperationResponse,
    HealthResponse,
    HistoryResponse,
    PriceBatchResponse,
    ValidationResponse,
)
from portfolio_pricer.core.models import CacheStats, HistoryRange
from portfolio_pricer.prices.classifier import normalize
from portfolio_pricer.prices.resolver import PriceResolver

router = APIRouter()

MAX_BATCH_SYMBOLS = 200


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(
    resolver: PriceResolver = Depends(get_resolver),
    config=Depends(get_config),
):
    """Service health and cache size."""
    stats = await resolver.cache_stats()
    return HealthResponse(
        status="ok",
        version=portfolio_pricer.__version__,
        cache_backend=str(config.cache.backend.value),
        cached_symbols=stats.total,
    )


# -- Prices --


@router.get("/prices", response_model=PriceBatchResponse)
async def resolve_prices(
    symbols: str = Query(..., description="Comma-separated tickers, e.g. THYAO,AFA,USDTRY"),
    resolver: PriceResolver = Depends(get_resolver),
):
    """Resolve a batch of symbols, cache first."""
    requested = [s for s in symbols.split(",") if s.strip()]
    if not requested:
        raise HTTPException(status_code=400, detail="No symbols given")
    if len(requested) > MAX_BATCH_SYMBOLS:
        raise HTTPException(
            status_code=400, detail=f"At most {MAX_BATCH_SYMBOLS} symbols per request"
        )

    batch = resolver.resolve_batch(requested)
    items = await batch.collect()
    return PriceBatchResponse(items=items, stats=batch.stats)


@router.get("/prices/{symbol}/history", response_model=HistoryResponse)
async def price_history(
    symbol: str,
    range_: HistoryRange = Query(HistoryRange.ONE_MONTH, alias="range"),
    resolver: PriceResolver = Depends(get_resolver),
):
    """Price series for charting, oldest first."""
    points = await resolver.fetch_history(symbol, range_)
    return HistoryResponse(symbol=normalize(symbol), range=range_.value, points=points)


@router.get("/prices/{symbol}/validate", response_model=ValidationResponse)
async def validate_symbol(
    symbol: str,
    resolver: PriceResolver = Depends(get_resolver),
):
    """Check that a symbol can be priced before adding it as a holding."""
    record = await resolver.validate_symbol(symbol)
    return ValidationResponse(symbol=normalize(symbol), valid=record is not None, record=record)


# -- Cache --


@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(resolver: PriceResolver = Depends(get_resolver)):
    return await resolver.cache_stats()


@router.post("/cache/invalidate", response_model=CacheOperationResponse)
async def invalidate_cache(resolver: PriceResolver = Depends(get_resolver)):
    """Mark every cached record stale; the next batch refetches everything."""
    affected = await resolver.invalidate_cache()
    return CacheOperationResponse(operation="invalidate", affected=affected)


@router.delete("/cache", response_model=CacheOperationResponse)
async def clear_cache(resolver: PriceResolver = Depends(get_resolver)):
    affected = await resolver.clear_cache()
    return CacheOperationResponse(operation="clear", affected=affected)
