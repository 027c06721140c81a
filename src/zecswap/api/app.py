"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from zecswap.catalog import CatalogUnavailable
from zecswap.config import get_settings
from zecswap.exceptions import (
    AllocationUnavailable,
    InvalidAmount,
    InvalidDestinationAddress,
    InvalidTransition,
    OrderConflict,
    OrderNotFound,
    QuoteAlreadyConsumed,
    QuoteExpired,
    QuoteNotFound,
    RateUnavailable,
    ReportRejected,
    SwapError,
    UnknownAsset,
)
from zecswap.ledger.database import close_db, init_db
from zecswap.services.container import SwapCore, build_core
from zecswap.utils.locks import LockTimeoutError

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[SwapError], int] = {
    InvalidAmount: 400,
    UnknownAsset: 404,
    QuoteNotFound: 404,
    OrderNotFound: 404,
    QuoteAlreadyConsumed: 409,
    InvalidTransition: 409,
    OrderConflict: 409,
    ReportRejected: 409,
    QuoteExpired: 410,
    InvalidDestinationAddress: 422,
    RateUnavailable: 503,
    AllocationUnavailable: 503,
}


def status_code_for(error: SwapError) -> int:
    for error_cls in type(error).__mro__:
        if error_cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_cls]
    return 400


async def swap_error_handler(request: Request, exc: SwapError) -> JSONResponse:
    """Translate core errors to JSON responses."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": exc.message})


async def lock_timeout_handler(request: Request, exc: LockTimeoutError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} -> 503 busy: {exc}")
    return JSONResponse(status_code=503, content={"error": "busy", "detail": str(exc)})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    core: SwapCore = app.state.core

    # Startup
    await init_db(core.session_factory.kw.get("bind"))
    try:
        await core.catalog.refresh()
    except CatalogUnavailable as e:
        logger.error(f"Asset catalog unavailable at startup: {e}")
    core.sweeper.start()
    yield
    # Shutdown
    await core.sweeper.stop()
    await close_db()


def create_app(core: Optional[SwapCore] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = core.settings if core is not None else get_settings()

    app = FastAPI(
        title="zecswap API",
        description="Swap-order orchestration: quotes, deposits and order status for swaps into ZEC",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.core = core or build_core(settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SwapError, swap_error_handler)
    app.add_exception_handler(LockTimeoutError, lock_timeout_handler)

    # Register routes
    from zecswap.api.routers import admin, webhook
    from zecswap.api.routes import assets, health, orders, quotes

    app.include_router(health.router, tags=["Health"])
    app.include_router(assets.router, prefix="/api/v1", tags=["Assets"])
    app.include_router(quotes.router, prefix="/api/v1", tags=["Quotes"])
    app.include_router(orders.router, prefix="/api/v1", tags=["Orders"])
    app.include_router(webhook.router, tags=["Webhooks"])
    app.include_router(admin.router, tags=["Admin"])

    return app
