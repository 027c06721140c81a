"""Status queries for presentation layers.

Reads never change state. The countdown is derived from the stored
deadline on every read, so nothing has to tick it down.
"""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from zecswap.exceptions import OrderNotFound
from zecswap.ledger.database import session_scope
from zecswap.ledger.models import OrderStatus, SwapOrder
from zecswap.ledger.repository import SwapRepository
from zecswap.utils.clock import Clock, seconds_until, utcnow
from zecswap.web.contracts.orders import DepositView, OrderStatusView, TransitionView


def build_status_view(order: SwapOrder, now: datetime) -> OrderStatusView:
    """Project a loaded order (deposits, transitions, quote) into its view."""
    if order.status == OrderStatus.PENDING:
        remaining = seconds_until(order.deposit_deadline, now)
    else:
        remaining = 0

    return OrderStatusView(
        order_id=order.id,
        quote_id=order.quote_id,
        status=order.status,
        is_terminal=order.is_terminal,
        source_asset_id=order.source_asset_id,
        expected_input_amount=order.expected_input_amount,
        fee_amount=order.quote.fee_amount,
        expected_output=order.expected_output,
        exchange_rate=order.quote.exchange_rate,
        deposit_address=order.deposit_address,
        deposit_memo=order.deposit_memo,
        destination_address=order.destination_address,
        received_amount=order.received_amount,
        deposits=[
            DepositView(
                tx_reference=d.tx_reference,
                amount=d.amount,
                asset_id=d.asset_id,
                memo=d.memo,
                counted=d.counted,
                late=d.late,
                observed_at=d.observed_at,
            )
            for d in order.deposits
        ],
        transitions=[
            TransitionView(
                from_status=t.from_status,
                to_status=t.to_status,
                reason=t.reason,
                at=t.created_at,
            )
            for t in order.transitions
        ],
        created_at=order.created_at,
        updated_at=order.updated_at,
        deposit_deadline=order.deposit_deadline,
        deposit_sent_at=order.deposit_sent_at,
        seconds_remaining=remaining,
        settlement_reference=order.settlement_reference,
        error_message=order.error_message,
    )


class StatusQueryService:
    """Read-only access to order state."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def get_status(self, order_id: str) -> OrderStatusView:
        """Get the latest committed state of an order.

        Raises:
            OrderNotFound: if no order has this id
        """
        async with session_scope(self.session_factory) as session:
            order = await SwapRepository(session).get_order(order_id)
            if order is None:
                raise OrderNotFound(f"Order {order_id} not found")
            return build_status_view(order, self.clock())
