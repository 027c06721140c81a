"""Admin API endpoints (token-protected)."""

from fastapi import APIRouter, Depends, Query

from zecswap.api.dependencies import get_core, require_admin_token
from zecswap.services.container import SwapCore
from zecswap.services.reconciliation import ReconciliationReport

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/reconciliation", response_model=ReconciliationReport)
async def get_reconciliation_report(
    limit: int = Query(100, ge=1, le=1000),
    core: SwapCore = Depends(get_core),
    _: bool = Depends(require_admin_token),
) -> ReconciliationReport:
    """Late deposits, short expired orders and failed allocations."""
    return await core.reconciliation.build_report(limit=limit)


@router.post("/sweep")
async def run_sweep(
    core: SwapCore = Depends(get_core),
    _: bool = Depends(require_admin_token),
) -> dict:
    """Run one deadline sweep cycle now."""
    return await core.sweeper.run_once()
