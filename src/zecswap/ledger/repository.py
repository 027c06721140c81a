"""Repository for quote, order and deposit-pool persistence."""

from datetime import datetime
from typing import Optional

from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from zecswap.ledger.models import (
    DepositAddress,
    DepositBinding,
    ObservedDeposit,
    OrderStatus,
    Quote,
    QuoteState,
    SwapOrder,
)


class SwapRepository:
    """Repository for all swap-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Quote operations
    async def add_quote(self, quote: Quote) -> Quote:
        """Store a newly issued quote."""
        self.session.add(quote)
        await self.session.flush()
        return quote

    async def get_quote(self, quote_id: str) -> Optional[Quote]:
        """Get a quote by ID."""
        stmt = select(Quote).where(Quote.id == quote_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def consume_quote(self, quote_id: str, now: datetime) -> bool:
        """Atomically move a quote from unused to consumed.

        The state check is part of the UPDATE, so of two concurrent callers
        exactly one sees a changed row. Loaded Quote instances are not
        synchronized; refresh them if the new state is needed.
        """
        stmt = (
            update(Quote)
            .where(Quote.id == quote_id, Quote.state == QuoteState.UNUSED)
            .values(state=QuoteState.CONSUMED, consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def expire_stale_quotes(self, now: datetime) -> int:
        """Flag unused quotes past their expiry. Quotes are never deleted."""
        stmt = (
            update(Quote)
            .where(Quote.state == QuoteState.UNUSED, Quote.expires_at <= now)
            .values(state=QuoteState.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def get_orphaned_quotes(self) -> list[Quote]:
        """Consumed quotes with no order behind them."""
        has_order = exists().where(SwapOrder.quote_id == Quote.id)
        stmt = select(Quote).where(Quote.state == QuoteState.CONSUMED, ~has_order)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_quotes_by_state(self, state: QuoteState, limit: int = 100) -> list[Quote]:
        """Get quotes in a given state, oldest first."""
        stmt = select(Quote).where(Quote.state == state).order_by(Quote.issued_at).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Order operations
    async def add_order(self, order: SwapOrder) -> SwapOrder:
        """Store a new swap order."""
        self.session.add(order)
        await self.session.flush()
        return order

    async def get_order(self, order_id: str) -> Optional[SwapOrder]:
        """Get an order by ID (deposits and transitions eagerly loaded)."""
        stmt = select(SwapOrder).where(SwapOrder.id == order_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_overdue_order_ids(self, now: datetime, limit: int = 500) -> list[str]:
        """IDs of pending orders whose deposit deadline has passed."""
        stmt = (
            select(SwapOrder.id)
            .where(SwapOrder.status == OrderStatus.PENDING, SwapOrder.deposit_deadline <= now)
            .order_by(SwapOrder.deposit_deadline)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_order_ids_by_status(self, status: OrderStatus, limit: int = 500) -> list[str]:
        """IDs of orders in a given status, oldest first."""
        stmt = (
            select(SwapOrder.id)
            .where(SwapOrder.status == status)
            .order_by(SwapOrder.created_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_expired_orders_with_deposits(self, limit: int = 100) -> list[SwapOrder]:
        """Expired orders that received at least one deposit report."""
        has_deposit = exists().where(ObservedDeposit.order_id == SwapOrder.id)
        stmt = (
            select(SwapOrder)
            .where(SwapOrder.status == OrderStatus.EXPIRED, has_deposit)
            .order_by(SwapOrder.deposit_deadline)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Observed deposit operations
    async def get_deposit(self, order_id: str, tx_reference: str) -> Optional[ObservedDeposit]:
        """Get a recorded deposit by order and transaction reference (idempotency check)."""
        stmt = select(ObservedDeposit).where(
            ObservedDeposit.order_id == order_id,
            ObservedDeposit.tx_reference == tx_reference,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # Address pool operations
    async def get_free_pool_address(self, asset_id: str) -> Optional[DepositAddress]:
        """Lowest-index pool address with no active binding."""
        bound = exists().where(
            DepositBinding.asset_id == DepositAddress.asset_id,
            DepositBinding.address == DepositAddress.address,
            DepositBinding.released_at.is_(None),
        )
        stmt = (
            select(DepositAddress)
            .where(DepositAddress.asset_id == asset_id, ~bound)
            .order_by(DepositAddress.derivation_index)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pool_address(self, asset_id: str, derivation_index: int) -> Optional[DepositAddress]:
        """Get the pool address at a derivation index."""
        stmt = select(DepositAddress).where(
            DepositAddress.asset_id == asset_id,
            DepositAddress.derivation_index == derivation_index,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def count_pool_addresses(self, asset_id: str) -> int:
        """Number of addresses derived so far for an asset."""
        stmt = select(func.count(DepositAddress.id)).where(DepositAddress.asset_id == asset_id)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def add_pool_address(
        self, asset_id: str, address: str, derivation_index: int, now: datetime
    ) -> DepositAddress:
        """Add a derived address to an asset's pool."""
        record = DepositAddress(
            asset_id=asset_id,
            address=address,
            derivation_index=derivation_index,
            created_at=now,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    # Binding operations
    async def is_target_bound(self, asset_id: str, address: str, memo: str = "") -> bool:
        """Check whether a deposit target has an active binding."""
        stmt = select(DepositBinding.id).where(
            DepositBinding.asset_id == asset_id,
            DepositBinding.address == address,
            DepositBinding.memo == memo,
            DepositBinding.released_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def add_binding(
        self, asset_id: str, address: str, memo: str, order_id: str, now: datetime
    ) -> DepositBinding:
        """Bind a deposit target to an order."""
        binding = DepositBinding(
            asset_id=asset_id,
            address=address,
            memo=memo,
            order_id=order_id,
            created_at=now,
        )
        self.session.add(binding)
        await self.session.flush()
        return binding

    async def release_binding(self, order_id: str, now: datetime) -> bool:
        """Release an order's deposit target so it can be reused."""
        stmt = (
            update(DepositBinding)
            .where(DepositBinding.order_id == order_id, DepositBinding.released_at.is_(None))
            .values(released_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
