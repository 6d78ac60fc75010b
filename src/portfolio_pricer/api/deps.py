"""Request-scoped access to the shared resolver, plus API key enforcement."""

from __future__ import annotations

import hmac
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse

from portfolio_pricer.core.config import PricerConfig
from portfolio_pricer.prices.resolver import PriceResolver

# Liveness probes must work without credentials
UNAUTHENTICATED_PATHS = frozenset({"/api/health", "/docs", "/openapi.json"})


@dataclass
class PricerState:
    """Objects that live for the whole server process (set in lifespan)."""

    config: PricerConfig
    resolver: PriceResolver


def _state(request: Request) -> PricerState:
    return request.app.state.pricer


def get_config(request: Request) -> PricerConfig:
    return _state(request).config


def get_resolver(request: Request) -> PriceResolver:
    """The process-wide resolver; its cache is shared by every request."""
    return _state(request).resolver


async def api_key_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Reject requests whose X-API-Key header does not match the configured key."""
    expected = _state(request).config.api.api_key
    if not expected or request.url.path in UNAUTHENTICATED_PATHS:
        return await call_next(request)

    supplied = request.headers.get("X-API-Key", "")
    if not hmac.compare_digest(supplied.encode(), expected.encode()):
        return JSONResponse(
            status_code=401,
            content={"error": "Unauthorized", "detail": "Invalid or missing API key"},
        )
    return await call_next(request)
