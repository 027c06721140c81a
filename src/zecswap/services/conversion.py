"""Conversion backends: hand a funded order to whatever turns it into ZEC.

The order state machine submits an order once its deposit is sufficient.
The outcome comes back later through ``report_settlement``.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversionRequest:
    """What a backend needs to convert one order."""

    order_id: str
    source_asset_id: str
    input_amount: Decimal
    expected_output: Decimal
    destination_address: str


class ConversionBackend(ABC):
    """Abstract base class for conversion backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name identifier."""
        pass

    @abstractmethod
    async def submit(self, request: ConversionRequest) -> str:
        """Start converting an order.

        Submission must be idempotent by ``order_id``: an order left in
        ``deposited`` after a crash is submitted again by the sweeper.

        Returns:
            Backend reference for the submission

        Raises:
            Exception: any failure; the order is then marked failed
        """
        pass


class DryRunConversionBackend(ConversionBackend):
    """Accepts every submission without moving funds (PoC / tests)."""

    def __init__(self):
        self.submitted: dict[str, ConversionRequest] = {}

    @property
    def name(self) -> str:
        return "dry_run"

    async def submit(self, request: ConversionRequest) -> str:
        reference = "sim_" + hashlib.sha256(request.order_id.encode()).hexdigest()[:32]
        if request.order_id in self.submitted:
            logger.debug(f"Order {request.order_id} already submitted as {reference}")
            return reference

        self.submitted[request.order_id] = request
        logger.info(
            f"[dry-run] Converting {request.input_amount} {request.source_asset_id} -> "
            f"{request.expected_output} ZEC to {request.destination_address} ({reference})"
        )
        return reference
