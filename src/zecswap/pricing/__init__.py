"""Exchange-rate sources for quotes."""

from zecswap.config import Settings
from zecswap.pricing.base import RateSource
from zecswap.pricing.fixed import FixedRateSource
from zecswap.pricing.http import HttpRateSource


def create_rate_source(settings: Settings) -> RateSource:
    """Build the rate source selected by RATE_SOURCE (fixed by default)."""
    if settings.rate_source.lower() == "http":
        return HttpRateSource(settings.price_api_url)
    return FixedRateSource(default_rate=settings.default_rate)


__all__ = ["FixedRateSource", "HttpRateSource", "RateSource", "create_rate_source"]
