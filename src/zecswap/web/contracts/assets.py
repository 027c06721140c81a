"""Asset catalog contracts."""

from typing import Optional

from pydantic import BaseModel, Field

from zecswap.catalog.base import Asset


class AssetInfo(BaseModel):
    """Information about a source asset that can be swapped into ZEC."""

    asset_id: str = Field(..., description="Catalog identifier used in quote requests")
    symbol: str = Field(..., description="Asset symbol (BTC, ETH, etc.)")
    chain: str = Field(..., description="Native chain (bitcoin, ethereum, etc.)")
    decimals: int = Field(..., description="On-chain precision")
    memo_required: bool = Field(
        default=False,
        description="Whether deposits must carry a memo / destination tag",
    )
    contract_address: Optional[str] = Field(
        None,
        description="Contract address for tokens (None for native assets)",
    )

    @classmethod
    def from_asset(cls, asset: Asset) -> "AssetInfo":
        return cls(
            asset_id=asset.asset_id,
            symbol=asset.symbol,
            chain=asset.chain_name,
            decimals=asset.decimals,
            memo_required=asset.memo_required,
            contract_address=asset.contract_address,
        )


class AssetListResponse(BaseModel):
    """Response containing list of supported assets."""

    success: bool = True
    assets: list[AssetInfo] = Field(default_factory=list)
    total: int = Field(default=0, description="Total number of assets")
