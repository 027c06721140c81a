"""Built-in asset list used when no catalog service is configured."""

from typing import Optional

from zecswap.catalog.base import Asset, AssetCatalog

DEFAULT_ASSETS: list[Asset] = [
    Asset("btc", "BTC", "bitcoin", 8),
    Asset("eth", "ETH", "ethereum", 18),
    Asset(
        "usdc-eth", "USDC", "ethereum", 6,
        contract_address="0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
    ),
    Asset(
        "usdt-eth", "USDT", "ethereum", 6,
        contract_address="0xdac17f958d2ee523a2206206994597c13d831ec7",
    ),
    Asset("ltc", "LTC", "litecoin", 8),
    Asset("doge", "DOGE", "dogecoin", 8),
    Asset("sol", "SOL", "solana", 9),
    Asset("xrp", "XRP", "xrp", 6, memo_required=True),
    Asset("xlm", "XLM", "stellar", 7, memo_required=True),
    Asset("atom", "ATOM", "cosmos", 6, memo_required=True),
    Asset("ton", "TON", "ton", 9, memo_required=True),
]


class StaticAssetCatalog(AssetCatalog):
    """Catalog backed by an in-process asset list."""

    def __init__(self, assets: Optional[list[Asset]] = None):
        super().__init__()
        self._source = list(assets) if assets is not None else list(DEFAULT_ASSETS)

    @property
    def name(self) -> str:
        return "static"

    async def load(self) -> list[Asset]:
        return list(self._source)
