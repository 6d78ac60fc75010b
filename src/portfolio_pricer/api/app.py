"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portfolio_pricer.api.deps import PricerState, api_key_middleware
from portfolio_pricer.api.routes import router
from portfolio_pricer.core.config import PricerConfig, load_config
from portfolio_pricer.core.exceptions import (
    CacheError,
    ConfigError,
    PricerError,
    QuoteError,
)
from portfolio_pricer.prices.resolver import PriceResolver


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state._pending_config or load_config()
    resolver = app.state._pending_resolver or await PriceResolver.from_config(config)

    app.state.pricer = PricerState(config=config, resolver=resolver)

    yield

    await resolver.close()


def create_app(
    config: PricerConfig | None = None,
    resolver: PriceResolver | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    A pre-built `resolver` (e.g. with injected adapters) replaces the one
    the lifespan would otherwise build from config.
    """
    import portfolio_pricer

    app = FastAPI(
        title="Portfolio Pricer API",
        description="Cached multi-asset price resolution",
        version=portfolio_pricer.__version__,
        lifespan=lifespan,
    )

    # Read back by lifespan; None means build from config
    app.state._pending_config = config
    app.state._pending_resolver = resolver

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Optional API key middleware
    if config and config.api.api_key:
        app.middleware("http")(api_key_middleware)

    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(PricerError)
    async def pricer_exception_handler(request: Request, exc: PricerError):
        if isinstance(exc, QuoteError):
            status = 502
        else:
            status = {ConfigError: 400, CacheError: 500}.get(type(exc), 500)
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    return app
