"""Source asset catalog."""

from zecswap.catalog.base import MEMO_CHAINS, Asset, AssetCatalog
from zecswap.catalog.http import CatalogUnavailable, HttpAssetCatalog
from zecswap.catalog.static import DEFAULT_ASSETS, StaticAssetCatalog
from zecswap.config import Settings


def create_catalog(settings: Settings) -> AssetCatalog:
    """Build the catalog selected by CATALOG_SOURCE (static by default)."""
    if settings.catalog_source.lower() == "http":
        return HttpAssetCatalog(settings.catalog_url)
    return StaticAssetCatalog()


__all__ = [
    "Asset",
    "AssetCatalog",
    "CatalogUnavailable",
    "DEFAULT_ASSETS",
    "HttpAssetCatalog",
    "MEMO_CHAINS",
    "StaticAssetCatalog",
    "create_catalog",
]
