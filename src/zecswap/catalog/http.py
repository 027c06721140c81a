"""Catalog backed by the token list service.

The service exposes ``GET /api/tokens`` returning rows shaped like::

    {"assetId": "btc", "blockchain": "bitcoin", "symbol": "BTC",
     "decimals": 8, "contractAddress": null}

Rows may carry an explicit ``memoRequired`` flag; otherwise it is derived
from the chain.
"""

import logging
from typing import Optional

import httpx

from zecswap.catalog.base import MEMO_CHAINS, Asset, AssetCatalog

logger = logging.getLogger(__name__)


class CatalogUnavailable(Exception):
    """Raised when the token list cannot be fetched or parsed."""

    pass


class HttpAssetCatalog(AssetCatalog):
    """Asset catalog that reads the remote token list."""

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        """Initialize the catalog.

        Args:
            base_url: Token service base URL (without /api/tokens)
            timeout: Request timeout in seconds
            client: Optional preconfigured client (used by tests)
        """
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def name(self) -> str:
        return "http"

    async def load(self) -> list[Asset]:
        url = f"{self.base_url}/api/tokens"
        try:
            if self._client is not None:
                response = await self._client.get(url)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url)
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Token list fetch failed from {url}: {e}")
            raise CatalogUnavailable(f"Token list unavailable: {e}") from e

        if not isinstance(rows, list):
            raise CatalogUnavailable(f"Expected a JSON list from {url}")

        assets = []
        for row in rows:
            asset = self._parse_row(row)
            if asset is not None:
                assets.append(asset)
        return assets

    @staticmethod
    def _parse_row(row: dict) -> Optional[Asset]:
        """Convert a token row into an Asset, skipping malformed rows."""
        try:
            chain = str(row["blockchain"]).lower()
            memo_required = row.get("memoRequired")
            if memo_required is None:
                memo_required = chain in MEMO_CHAINS
            return Asset(
                asset_id=str(row["assetId"]),
                symbol=str(row["symbol"]),
                chain_name=chain,
                decimals=int(row["decimals"]),
                memo_required=bool(memo_required),
                contract_address=row.get("contractAddress"),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed token row {row!r}: {e}")
            return None
