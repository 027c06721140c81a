"""Asset catalog interface.

The catalog is a read-only lookup of source assets that can be swapped
into ZEC. Implementations only decide where the rows come from; caching,
ordering and lookups are shared.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from zecswap.exceptions import UnknownAsset

logger = logging.getLogger(__name__)

# Chains where one deposit address is shared and orders are told apart by a
# memo / destination tag.
MEMO_CHAINS = frozenset({"xrp", "stellar", "cosmos", "ton", "eos", "hedera", "bnb"})


@dataclass(frozen=True)
class Asset:
    """A supported source asset."""

    asset_id: str
    symbol: str
    chain_name: str
    decimals: int
    memo_required: bool = False
    contract_address: Optional[str] = None

    def __post_init__(self):
        if self.decimals < 0:
            raise ValueError(f"Asset {self.asset_id} has negative decimals")


class AssetCatalog(ABC):
    """Abstract base class for asset catalogs."""

    def __init__(self):
        self._assets: dict[str, Asset] = {}

    @property
    @abstractmethod
    def name(self) -> str:
        """Catalog source name."""
        pass

    @abstractmethod
    async def load(self) -> list[Asset]:
        """Fetch the full asset list from the source."""
        pass

    async def refresh(self) -> int:
        """Reload assets from the source.

        Returns:
            Number of assets loaded
        """
        assets = await self.load()
        self._assets = {asset.asset_id: asset for asset in assets}
        logger.info(f"Loaded {len(self._assets)} assets from {self.name} catalog")
        return len(self._assets)

    def list_assets(self) -> list[Asset]:
        """All assets ordered by symbol."""
        return sorted(self._assets.values(), key=lambda a: (a.symbol.upper(), a.asset_id))

    def get_asset(self, asset_id: str) -> Asset:
        """Look up an asset by id.

        Raises:
            UnknownAsset: if the id is not in the catalog
        """
        asset = self._assets.get(asset_id)
        if asset is None:
            raise UnknownAsset(f"Unknown asset: {asset_id}")
        return asset

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self._assets
