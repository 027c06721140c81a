"""Asset catalog endpoints."""

from fastapi import APIRouter, Depends

from zecswap.api.dependencies import get_core
from zecswap.services.container import SwapCore
from zecswap.web.contracts.assets import AssetInfo, AssetListResponse

router = APIRouter()


@router.get("/assets", response_model=AssetListResponse)
async def list_assets(core: SwapCore = Depends(get_core)) -> AssetListResponse:
    """List source assets that can be swapped into ZEC."""
    assets = [AssetInfo.from_asset(asset) for asset in core.catalog.list_assets()]
    return AssetListResponse(assets=assets, total=len(assets))
