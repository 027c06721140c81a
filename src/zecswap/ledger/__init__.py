"""Persistence layer for quotes, orders and the deposit address pool."""

from zecswap.ledger.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Base,
    DepositAddress,
    DepositBinding,
    ObservedDeposit,
    OrderStatus,
    OrderTransition,
    Quote,
    QuoteMode,
    QuoteState,
    SwapOrder,
)
from zecswap.ledger.repository import SwapRepository

__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "Base",
    "DepositAddress",
    "DepositBinding",
    "ObservedDeposit",
    "OrderStatus",
    "OrderTransition",
    "Quote",
    "QuoteMode",
    "QuoteState",
    "SwapOrder",
    "SwapRepository",
]
