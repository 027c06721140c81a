"""Order state machine.

Every status change for an order runs under that order's lock and commits
before the lock is released, so a watcher report racing a deadline tick is
linearized. The lock only covers this process; across processes (a second
API worker, ``scripts/reconcile.py --sweep``) the versioned order row makes
a write against a stale copy fail, and the change is re-applied to the
current row. Legal edges::

    pending    -> deposited   sum of counted deposits >= expected input
    pending    -> expired     deposit deadline passed
    deposited  -> processing  conversion submitted (automatic)
    processing -> complete    settlement confirmed
    processing -> failed      settlement failed

Entering a terminal status releases the order's deposit target.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, Optional, TypeVar, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from zecswap.exceptions import InvalidTransition, OrderConflict, OrderNotFound, ReportRejected
from zecswap.ledger.database import session_scope
from zecswap.ledger.models import ObservedDeposit, OrderStatus, OrderTransition, SwapOrder
from zecswap.ledger.repository import SwapRepository
from zecswap.services.conversion import ConversionBackend, ConversionRequest
from zecswap.utils.clock import Clock, utcnow
from zecswap.utils.locks import KeyedLockRegistry, LockTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_WRITE_ATTEMPTS = 3


@dataclass(frozen=True)
class DepositAck:
    """Acknowledgment returned to the deposit watcher."""

    order_id: str
    tx_reference: str
    status: OrderStatus
    duplicate: bool = False
    counted: bool = False
    late: bool = False


def _parse_observed_amount(raw: Union[str, Decimal]) -> Decimal:
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ReportRejected(f"Observed amount is not a number: {raw!r}")
    if not amount.is_finite() or amount <= 0:
        raise ReportRejected(f"Observed amount must be positive: {raw!r}")
    return amount


class OrderStateMachine:
    """Applies watcher reports, deadline ticks and settlement outcomes to orders."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        order_locks: KeyedLockRegistry,
        conversion_backend: ConversionBackend,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.order_locks = order_locks
        self.conversion_backend = conversion_backend
        self.clock = clock

    # Watcher reports
    async def report_deposit(
        self,
        order_id: str,
        tx_reference: str,
        observed_amount: Union[str, Decimal],
        observed_asset: str,
        memo: Optional[str] = None,
    ) -> DepositAck:
        """Record an inbound transaction reported by the deposit watcher.

        Re-delivering a ``tx_reference`` already recorded for the order is
        acknowledged as a duplicate and changes nothing. A report at or after
        the deadline of a pending order expires the order first and is then
        stored as late; late deposits never move an expired order.

        Raises:
            OrderNotFound: unknown order
            ReportRejected: order is complete or failed, or the report is malformed
        """
        tx_reference = (tx_reference or "").strip()
        if not tx_reference:
            raise ReportRejected("Deposit report needs a transaction reference")
        amount = _parse_observed_amount(observed_amount)
        memo = memo.strip() if memo else None

        async def apply(repo: SwapRepository, order: SwapOrder) -> tuple[DepositAck, bool]:
            if await repo.get_deposit(order_id, tx_reference) is not None:
                logger.debug(f"Duplicate deposit report {tx_reference} for order {order_id}")
                return DepositAck(order_id, tx_reference, order.status, duplicate=True), False

            if order.status in (OrderStatus.COMPLETE, OrderStatus.FAILED):
                logger.warning(
                    f"Rejected deposit {tx_reference} for {order.status.value} order {order_id}"
                )
                raise ReportRejected(
                    f"Order {order_id} is {order.status.value} and accepts no deposits"
                )

            now = self.clock()
            if order.status == OrderStatus.PENDING and now >= order.deposit_deadline:
                await self._expire(repo, order, now)

            late = order.status == OrderStatus.EXPIRED
            counted = self._matches(order, observed_asset, memo)
            order.deposits.append(
                ObservedDeposit(
                    tx_reference=tx_reference,
                    amount=amount,
                    asset_id=observed_asset,
                    memo=memo,
                    counted=counted,
                    late=late,
                    observed_at=now,
                )
            )
            # Touch the row so the write is checked against its version
            order.updated_at = now
            await repo.session.flush()

            if late:
                logger.warning(
                    f"Late deposit {tx_reference} of {amount} {observed_asset} "
                    f"for expired order {order_id}"
                )
            elif not counted:
                logger.warning(
                    f"Deposit {tx_reference} for order {order_id} does not match its "
                    f"target (asset={observed_asset}, memo={memo}); recorded, not counted"
                )
            else:
                logger.info(
                    f"Deposit {tx_reference} of {amount} {observed_asset} for order {order_id} "
                    f"({order.received_amount}/{order.expected_input_amount})"
                )

            funded = False
            if (
                order.status == OrderStatus.PENDING
                and order.received_amount >= order.expected_input_amount
            ):
                await self._transition(
                    repo,
                    order,
                    OrderStatus.DEPOSITED,
                    f"received {order.received_amount} of {order.expected_input_amount}",
                    now,
                )
                funded = True
            ack = DepositAck(order_id, tx_reference, order.status, counted=counted, late=late)
            return ack, funded

        ack, funded = await self._write(order_id, "report_deposit", apply)
        if funded:
            status = await self.start_conversion(order_id)
            if status is not None:
                ack = replace(ack, status=status)
        return ack

    @staticmethod
    def _matches(order: SwapOrder, observed_asset: str, memo: Optional[str]) -> bool:
        if observed_asset != order.source_asset_id:
            return False
        if order.deposit_memo is not None and memo != order.deposit_memo:
            return False
        return True

    # Conversion
    async def start_conversion(self, order_id: str) -> Optional[OrderStatus]:
        """Submit a ``deposited`` order to the conversion backend.

        Submission happens before the order moves to ``processing``, so an
        order whose submission was interrupted stays ``deposited`` and is
        picked up again by ``resume_conversions``. Backends accept the same
        order id more than once.

        Returns:
            The order's new status, or None if it was not ``deposited``
        """

        async def apply(repo: SwapRepository, order: SwapOrder) -> Optional[OrderStatus]:
            if order.status != OrderStatus.DEPOSITED:
                logger.debug(f"Order {order_id} is {order.status.value}, not starting conversion")
                return None

            request = ConversionRequest(
                order_id=order.id,
                source_asset_id=order.source_asset_id,
                input_amount=order.received_amount,
                expected_output=order.expected_output,
                destination_address=order.destination_address,
            )
            try:
                reference = await self.conversion_backend.submit(request)
            except Exception as e:
                logger.error(f"Conversion submission failed for order {order_id}: {e}")
                now = self.clock()
                await self._transition(repo, order, OrderStatus.PROCESSING, "conversion started", now)
                order.error_message = f"conversion submission failed: {e}"
                await self._transition(repo, order, OrderStatus.FAILED, "conversion submission failed", now)
            else:
                await self._transition(
                    repo,
                    order,
                    OrderStatus.PROCESSING,
                    f"conversion submitted to {self.conversion_backend.name} ({reference})",
                    self.clock(),
                )
            return order.status

        return await self._write(order_id, "start_conversion", apply)

    async def report_settlement(
        self,
        order_id: str,
        succeeded: bool,
        settlement_reference: Optional[str] = None,
        error: Optional[str] = None,
    ) -> SwapOrder:
        """Apply the conversion outcome to a ``processing`` order.

        Repeating the outcome an order already has is a no-op.

        Raises:
            OrderNotFound: unknown order
            InvalidTransition: order is not ``processing``
        """
        target = OrderStatus.COMPLETE if succeeded else OrderStatus.FAILED

        async def apply(repo: SwapRepository, order: SwapOrder) -> SwapOrder:
            if order.status == target:
                logger.debug(f"Settlement for order {order_id} already recorded as {target.value}")
                return order

            if succeeded:
                order.settlement_reference = settlement_reference
                reason = "settlement confirmed" + (f" ({settlement_reference})" if settlement_reference else "")
            else:
                order.error_message = error or "conversion failed"
                if settlement_reference:
                    order.settlement_reference = settlement_reference
                reason = f"settlement failed: {order.error_message}"
            await self._transition(repo, order, target, reason[:255], self.clock())
            return order

        return await self._write(order_id, "report_settlement", apply)

    # Presentation hints
    async def acknowledge_deposit_sent(self, order_id: str) -> SwapOrder:
        """Record that the user says they sent the deposit. Status is unchanged."""

        async def apply(repo: SwapRepository, order: SwapOrder) -> SwapOrder:
            if not order.status.is_terminal and order.deposit_sent_at is None:
                now = self.clock()
                order.deposit_sent_at = now
                order.updated_at = now
                logger.info(f"User reported deposit sent for order {order_id}")
            return order

        return await self._write(order_id, "deposit_sent", apply)

    # Sweeps
    async def expire_if_overdue(self, order_id: str) -> bool:
        """Expire a pending order whose deadline has passed. Returns True if it expired."""

        async def apply(repo: SwapRepository, order: SwapOrder) -> bool:
            now = self.clock()
            if order.status != OrderStatus.PENDING or now < order.deposit_deadline:
                return False
            await self._expire(repo, order, now)
            return True

        return await self._write(order_id, "expire", apply)

    async def expire_overdue(self, limit: int = 500) -> int:
        """Expire every pending order past its deadline. Returns the number expired."""
        async with session_scope(self.session_factory) as session:
            order_ids = await SwapRepository(session).get_overdue_order_ids(self.clock(), limit)

        expired = 0
        for order_id in order_ids:
            try:
                if await self.expire_if_overdue(order_id):
                    expired += 1
            except (LockTimeoutError, OrderConflict):
                logger.warning(f"Order {order_id} busy, will retry expiry next sweep")
        return expired

    async def resume_conversions(self, limit: int = 500) -> int:
        """Submit orders left in ``deposited``. Returns the number moved on."""
        async with session_scope(self.session_factory) as session:
            order_ids = await SwapRepository(session).get_order_ids_by_status(
                OrderStatus.DEPOSITED, limit
            )

        resumed = 0
        for order_id in order_ids:
            try:
                if await self.start_conversion(order_id) is not None:
                    resumed += 1
            except (LockTimeoutError, OrderConflict):
                logger.warning(f"Order {order_id} busy, will retry conversion next sweep")
        if resumed:
            logger.info(f"Resumed conversion for {resumed} order(s)")
        return resumed

    # Internals
    async def _write(
        self,
        order_id: str,
        operation: str,
        apply: Callable[[SwapRepository, SwapOrder], Awaitable[T]],
    ) -> T:
        """Run ``apply`` on the loaded order under its lock, in one transaction.

        If another process updated the order after it was loaded, the flush
        raises StaleDataError, the transaction rolls back and ``apply`` runs
        again on the current row. The order's lock is dropped afterwards when
        the order is unknown or terminal.

        Raises:
            OrderNotFound: unknown order
            OrderConflict: the order changed under every attempt
        """
        forget = True
        try:
            async with self.order_locks.hold(order_id, operation=operation):
                for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
                    try:
                        async with session_scope(self.session_factory) as session:
                            repo = SwapRepository(session)
                            order = await self._load(repo, order_id)
                            try:
                                return await apply(repo, order)
                            finally:
                                forget = order.is_terminal
                    except StaleDataError:
                        logger.warning(
                            f"Order {order_id} changed under {operation} "
                            f"(attempt {attempt}/{MAX_WRITE_ATTEMPTS}), reloading"
                        )
                raise OrderConflict(f"Order {order_id} kept changing during {operation}, retry")
        finally:
            if forget:
                self.order_locks.discard(order_id)

    @staticmethod
    async def _load(repo: SwapRepository, order_id: str) -> SwapOrder:
        order = await repo.get_order(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    async def _expire(self, repo: SwapRepository, order: SwapOrder, now: datetime) -> None:
        received = order.received_amount
        if received > 0:
            reason = f"deadline passed with partial deposit {received} of {order.expected_input_amount}"
            logger.warning(f"Order {order.id} expired with partial deposit {received}, needs reconciliation")
        else:
            reason = "deadline passed without deposit"
        await self._transition(repo, order, OrderStatus.EXPIRED, reason, now)

    async def _transition(
        self,
        repo: SwapRepository,
        order: SwapOrder,
        target: OrderStatus,
        reason: str,
        now: datetime,
    ) -> None:
        """Move an order along one lifecycle edge. Caller holds the order lock.

        The flush is checked against the order's version, so a transition
        computed from a stale row raises StaleDataError instead of landing.
        """
        current = order.status
        if not current.can_transition_to(target):
            raise InvalidTransition(current.value, target.value, order.id)

        order.status = target
        order.updated_at = now
        order.transitions.append(
            OrderTransition(from_status=current, to_status=target, reason=reason, created_at=now)
        )
        if target.is_terminal:
            await repo.release_binding(order.id, now)
        await repo.session.flush()

        logger.info(f"Order {order.id}: {current.value} -> {target.value} ({reason})")
