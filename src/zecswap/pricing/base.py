"""Abstract pricing interface for the quote engine."""

from abc import ABC, abstractmethod
from decimal import Decimal

from zecswap.catalog.base import Asset


class RateSource(ABC):
    """Supplies ZEC-per-unit exchange rates for source assets.

    Implementations must raise ``RateUnavailable`` instead of returning a
    stale or made-up rate when the upstream cannot answer.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Rate source name."""
        pass

    @abstractmethod
    async def get_rate(self, asset: Asset) -> Decimal:
        """
        Get how many ZEC one unit of ``asset`` converts to.

        Args:
            asset: Source asset from the catalog

        Returns:
            Strictly positive rate

        Raises:
            RateUnavailable: if no rate can be produced
        """
        pass
