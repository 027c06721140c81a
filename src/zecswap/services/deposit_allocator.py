"""Deposit allocator: turns an accepted quote into a swap order.

Accepting a quote consumes it, assigns a deposit target and creates the
order in a single database transaction, all while holding the pool lock
of the quote's source asset.

Deposit targets:
- memo-less assets get a pool address that no non-terminal order holds,
  deriving a new one while the pool is below its size limit
- memo assets share one address per asset and get a random numeric memo
  that no non-terminal order on that address holds
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from zecswap.addresses import derive_deposit_address, is_transparent_zcash_address
from zecswap.catalog.base import Asset, AssetCatalog
from zecswap.exceptions import (
    AllocationUnavailable,
    InvalidDestinationAddress,
    QuoteAlreadyConsumed,
    QuoteExpired,
    QuoteNotFound,
)
from zecswap.ledger.database import session_scope
from zecswap.ledger.models import OrderStatus, OrderTransition, QuoteState, SwapOrder
from zecswap.ledger.repository import SwapRepository
from zecswap.utils.clock import Clock, utcnow
from zecswap.utils.locks import KeyedLockRegistry

logger = logging.getLogger(__name__)

MEMO_ATTEMPTS = 32
SHARED_ADDRESS_INDEX = 0


class DepositAllocator:
    """Accepts quotes and allocates collision-free deposit targets."""

    def __init__(
        self,
        catalog: AssetCatalog,
        session_factory: async_sessionmaker[AsyncSession],
        pool_locks: KeyedLockRegistry,
        pool_size: int = 1000,
        address_seed: str = "zecswap-dev-seed",
        memo_digits: int = 9,
        zcash_network: str = "mainnet",
        ttl_seconds: int = 900,
        clock: Clock = utcnow,
    ):
        self.catalog = catalog
        self.session_factory = session_factory
        self.pool_locks = pool_locks
        self.pool_size = pool_size
        self.address_seed = address_seed
        self.memo_digits = memo_digits
        self.zcash_network = zcash_network
        self.deposit_window = timedelta(seconds=ttl_seconds)
        self.clock = clock

    async def accept_quote(self, quote_id: str, destination_address: str) -> SwapOrder:
        """Consume a quote and open a swap order for it.

        Args:
            quote_id: Quote to accept
            destination_address: Transparent ZEC address to pay out to

        Returns:
            New order in ``pending`` status

        Raises:
            QuoteNotFound, QuoteAlreadyConsumed, QuoteExpired,
            InvalidDestinationAddress, AllocationUnavailable
        """
        async with session_scope(self.session_factory) as session:
            quote = await SwapRepository(session).get_quote(quote_id)
        if quote is None:
            raise QuoteNotFound(f"Quote {quote_id} not found")

        asset = self.catalog.get_asset(quote.source_asset_id)

        try:
            async with self.pool_locks.hold(asset.asset_id, operation=f"accept {quote_id}"):
                async with session_scope(self.session_factory) as session:
                    order = await self._accept_locked(SwapRepository(session), quote_id, asset, destination_address)
        except IntegrityError as e:
            # Another writer bound the same target; the whole transaction rolled back
            logger.warning(f"Deposit target conflict accepting {quote_id}: {e}")
            raise AllocationUnavailable(f"Deposit target for {asset.symbol} is contended, retry")

        logger.info(
            f"Opened order {order.id} from quote {quote_id}: deposit {order.expected_input_amount} "
            f"{asset.symbol} to {order.deposit_address}"
            + (f" memo {order.deposit_memo}" if order.deposit_memo else "")
            + f" by {order.deposit_deadline.isoformat()}"
        )
        return order

    async def _accept_locked(
        self,
        repo: SwapRepository,
        quote_id: str,
        asset: Asset,
        destination_address: str,
    ) -> SwapOrder:
        now = self.clock()

        quote = await repo.get_quote(quote_id)
        if quote is None:
            raise QuoteNotFound(f"Quote {quote_id} not found")
        # Consumption is checked before expiry so a reused quote id always
        # gets the same answer
        if quote.state in (QuoteState.CONSUMED, QuoteState.ALLOCATION_FAILED):
            raise QuoteAlreadyConsumed(f"Quote {quote_id} has already been used")
        if not quote.is_usable(now):
            raise QuoteExpired(f"Quote {quote_id} expired at {quote.expires_at.isoformat()}")

        destination_address = (destination_address or "").strip()
        if not is_transparent_zcash_address(destination_address, self.zcash_network):
            raise InvalidDestinationAddress(
                f"Not a transparent Zcash {self.zcash_network} address: {destination_address!r}"
            )

        if not await repo.consume_quote(quote_id, now):
            raise QuoteAlreadyConsumed(f"Quote {quote_id} has already been used")

        address, memo = await self._allocate_target(repo, asset, now)

        order = SwapOrder(
            id=f"ord_{uuid.uuid4().hex}",
            quote_id=quote.id,
            source_asset_id=asset.asset_id,
            expected_input_amount=quote.input_amount,
            expected_output=quote.expected_output,
            deposit_address=address,
            deposit_memo=memo,
            destination_address=destination_address,
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
            deposit_deadline=now + self.deposit_window,
            deposits=[],
            transitions=[
                OrderTransition(
                    from_status=None,
                    to_status=OrderStatus.PENDING,
                    reason=f"quote {quote.id} accepted",
                    created_at=now,
                )
            ],
        )
        order.quote = quote
        await repo.add_order(order)
        await repo.add_binding(asset.asset_id, address, memo or "", order.id, now)
        await repo.session.refresh(quote)
        return order

    async def _allocate_target(
        self, repo: SwapRepository, asset: Asset, now: datetime
    ) -> tuple[str, Optional[str]]:
        """Pick a deposit (address, memo) with no active binding. Caller holds the pool lock."""
        if asset.memo_required:
            address = await self._shared_address(repo, asset, now)
            memo = await self._unique_memo(repo, asset, address)
            return address, memo

        free = await repo.get_free_pool_address(asset.asset_id)
        if free is not None:
            logger.debug(f"Reusing pool address #{free.derivation_index} for {asset.asset_id}")
            return free.address, None

        index = await repo.count_pool_addresses(asset.asset_id)
        if index >= self.pool_size:
            logger.warning(f"Address pool for {asset.asset_id} exhausted ({self.pool_size} in use)")
            raise AllocationUnavailable(
                f"No free {asset.symbol} deposit address; retry once an order completes or expires"
            )

        address = derive_deposit_address(self.address_seed, asset, index)
        await repo.add_pool_address(asset.asset_id, address, index, now)
        logger.debug(f"Derived pool address #{index} for {asset.asset_id}")
        return address, None

    async def _shared_address(self, repo: SwapRepository, asset: Asset, now: datetime) -> str:
        record = await repo.get_pool_address(asset.asset_id, SHARED_ADDRESS_INDEX)
        if record is None:
            address = derive_deposit_address(self.address_seed, asset, SHARED_ADDRESS_INDEX)
            record = await repo.add_pool_address(asset.asset_id, address, SHARED_ADDRESS_INDEX, now)
        return record.address

    async def _unique_memo(self, repo: SwapRepository, asset: Asset, address: str) -> str:
        low = 10 ** (self.memo_digits - 1)
        for _ in range(MEMO_ATTEMPTS):
            memo = str(low + secrets.randbelow(9 * low))
            if not await repo.is_target_bound(asset.asset_id, address, memo):
                return memo
        raise AllocationUnavailable(f"Could not find a free {asset.symbol} deposit memo, retry")
