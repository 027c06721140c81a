"""Market pricing via a CoinGecko-compatible simple price API.

The ZEC rate for an asset is its USD price divided by ZEC's USD price.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from zecswap.catalog.base import Asset
from zecswap.exceptions import RateUnavailable
from zecswap.pricing.base import RateSource

logger = logging.getLogger(__name__)

ZEC_PRICE_ID = "zcash"

# Symbol -> price API coin id
PRICE_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDC": "usd-coin",
    "USDT": "tether",
    "LTC": "litecoin",
    "DOGE": "dogecoin",
    "SOL": "solana",
    "XRP": "ripple",
    "XLM": "stellar",
    "ATOM": "cosmos",
    "TON": "the-open-network",
    "BNB": "binancecoin",
    "TRX": "tron",
    "AVAX": "avalanche-2",
}


class HttpRateSource(RateSource):
    """Rate source backed by a public price API."""

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def name(self) -> str:
        return "http"

    async def get_rate(self, asset: Asset) -> Decimal:
        coin_id = PRICE_IDS.get(asset.symbol.upper())
        if coin_id is None:
            raise RateUnavailable(f"No price feed for {asset.symbol}")

        params = {"ids": f"{coin_id},{ZEC_PRICE_ID}", "vs_currencies": "usd"}
        url = f"{self.base_url}/simple/price"

        try:
            if self._client is not None:
                response = await self._client.get(url, params=params)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Price fetch failed for {asset.symbol}: {type(e).__name__}: {e}")
            raise RateUnavailable(f"Price source unavailable: {e}") from e

        try:
            asset_usd = Decimal(str(data[coin_id]["usd"]))
            zec_usd = Decimal(str(data[ZEC_PRICE_ID]["usd"]))
        except (KeyError, TypeError, InvalidOperation) as e:
            raise RateUnavailable(f"Malformed price response for {asset.symbol}") from e

        if asset_usd <= 0 or zec_usd <= 0:
            raise RateUnavailable(f"Non-positive price for {asset.symbol}")

        rate = asset_usd / zec_usd
        logger.debug(f"Rate {asset.symbol}/ZEC = {rate} (usd {asset_usd} / {zec_usd})")
        return rate
