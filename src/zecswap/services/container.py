"""Wiring of the swap-order core from settings."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from zecswap.catalog import AssetCatalog, create_catalog
from zecswap.config import Settings, get_settings
from zecswap.ledger.database import get_session_factory
from zecswap.pricing import RateSource, create_rate_source
from zecswap.services.conversion import ConversionBackend, DryRunConversionBackend
from zecswap.services.deposit_allocator import DepositAllocator
from zecswap.services.order_machine import OrderStateMachine
from zecswap.services.quote_engine import QuoteEngine
from zecswap.services.reconciliation import ReconciliationService
from zecswap.services.status import StatusQueryService
from zecswap.services.sweeper import DeadlineSweeper
from zecswap.utils.clock import Clock, utcnow
from zecswap.utils.locks import KeyedLockRegistry


@dataclass
class SwapCore:
    """All services of one running instance, sharing locks and storage."""

    settings: Settings
    catalog: AssetCatalog
    rate_source: RateSource
    session_factory: async_sessionmaker[AsyncSession]
    order_locks: KeyedLockRegistry
    pool_locks: KeyedLockRegistry
    quotes: QuoteEngine
    allocator: DepositAllocator
    orders: OrderStateMachine
    status: StatusQueryService
    reconciliation: ReconciliationService
    sweeper: DeadlineSweeper


def build_core(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    catalog: Optional[AssetCatalog] = None,
    rate_source: Optional[RateSource] = None,
    conversion_backend: Optional[ConversionBackend] = None,
    clock: Clock = utcnow,
) -> SwapCore:
    """Build the core. Anything not passed in comes from settings."""
    settings = settings or get_settings()
    session_factory = session_factory or get_session_factory()
    catalog = catalog or create_catalog(settings)
    rate_source = rate_source or create_rate_source(settings)
    conversion_backend = conversion_backend or DryRunConversionBackend()

    order_locks = KeyedLockRegistry("order", timeout=settings.lock_timeout_seconds)
    pool_locks = KeyedLockRegistry("pool", timeout=settings.lock_timeout_seconds)

    quotes = QuoteEngine(
        catalog,
        rate_source,
        session_factory,
        fee_rate=settings.fee_rate,
        ttl_seconds=settings.quote_ttl_seconds,
        clock=clock,
    )
    allocator = DepositAllocator(
        catalog,
        session_factory,
        pool_locks,
        pool_size=settings.address_pool_size,
        address_seed=settings.address_seed,
        memo_digits=settings.memo_digits,
        zcash_network=settings.zcash_network,
        ttl_seconds=settings.quote_ttl_seconds,
        clock=clock,
    )
    orders = OrderStateMachine(session_factory, order_locks, conversion_backend, clock=clock)
    status = StatusQueryService(session_factory, clock=clock)
    reconciliation = ReconciliationService(session_factory, clock=clock)
    sweeper = DeadlineSweeper(
        orders, quotes, reconciliation, interval_seconds=settings.sweep_interval_seconds
    )

    return SwapCore(
        settings=settings,
        catalog=catalog,
        rate_source=rate_source,
        session_factory=session_factory,
        order_locks=order_locks,
        pool_locks=pool_locks,
        quotes=quotes,
        allocator=allocator,
        orders=orders,
        status=status,
        reconciliation=reconciliation,
        sweeper=sweeper,
    )
