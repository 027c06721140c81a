"""Health check endpoints."""

from fastapi import APIRouter, Depends

from zecswap.api.dependencies import get_core
from zecswap.services.container import SwapCore

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "zecswap"}


@router.get("/health/detailed")
async def detailed_health(core: SwapCore = Depends(get_core)):
    """Detailed health check with configuration info."""
    return {
        "status": "healthy",
        "service": "zecswap",
        "version": "0.1.0",
        "catalog": {"source": core.catalog.name, "assets": len(core.catalog.list_assets())},
        "rate_source": core.rate_source.name,
        "sweeper_running": core.sweeper.is_running,
        "config": core.settings.get_safe_dict(),
    }
