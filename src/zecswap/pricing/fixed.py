"""Fixed-rate pricing for development and tests."""

from decimal import Decimal
from typing import Optional

from zecswap.catalog.base import Asset
from zecswap.exceptions import RateUnavailable
from zecswap.pricing.base import RateSource


class FixedRateSource(RateSource):
    """Returns a configured rate per asset, with an optional default.

    Assets without an override use ``default_rate``. Passing
    ``default_rate=None`` makes unknown assets raise RateUnavailable,
    and ``set_available(False)`` simulates an upstream outage.
    """

    def __init__(
        self,
        default_rate: Optional[Decimal] = Decimal("0.95"),
        overrides: Optional[dict[str, Decimal]] = None,
    ):
        self.default_rate = default_rate
        self.overrides = dict(overrides or {})
        self._available = True

    @property
    def name(self) -> str:
        return "fixed"

    def set_available(self, available: bool) -> None:
        self._available = available

    async def get_rate(self, asset: Asset) -> Decimal:
        if not self._available:
            raise RateUnavailable("Fixed rate source is offline")

        rate = self.overrides.get(asset.asset_id, self.default_rate)
        if rate is None or rate <= 0:
            raise RateUnavailable(f"No rate configured for {asset.asset_id}")
        return Decimal(rate)
