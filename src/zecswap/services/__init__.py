"""Swap-order core services."""

from zecswap.services.container import SwapCore, build_core
from zecswap.services.conversion import (
    ConversionBackend,
    ConversionRequest,
    DryRunConversionBackend,
)
from zecswap.services.deposit_allocator import DepositAllocator
from zecswap.services.order_machine import DepositAck, OrderStateMachine
from zecswap.services.quote_engine import QuoteEngine
from zecswap.services.reconciliation import ReconciliationReport, ReconciliationService
from zecswap.services.status import StatusQueryService
from zecswap.services.sweeper import DeadlineSweeper

__all__ = [
    "ConversionBackend",
    "ConversionRequest",
    "DeadlineSweeper",
    "DepositAck",
    "DepositAllocator",
    "DryRunConversionBackend",
    "OrderStateMachine",
    "QuoteEngine",
    "ReconciliationReport",
    "ReconciliationService",
    "StatusQueryService",
    "SwapCore",
    "build_core",
]
