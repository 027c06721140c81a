"""Reconciliation: surfaces funds and quotes that need an operator.

Nothing here changes order status. Expired orders stay expired; the report
only lists what arrived too late or too short, and quotes whose
acceptance never produced an order.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from zecswap.ledger.database import session_scope
from zecswap.ledger.models import QuoteState
from zecswap.ledger.repository import SwapRepository
from zecswap.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class LateDepositEntry(BaseModel):
    order_id: str
    tx_reference: str
    amount: Decimal
    asset_id: str
    memo: Optional[str] = None
    observed_at: datetime


class PartialDepositEntry(BaseModel):
    order_id: str
    source_asset_id: str
    expected_input_amount: Decimal
    received_amount: Decimal
    deposit_address: str
    deposit_memo: Optional[str] = None
    deposit_deadline: datetime


class FailedAllocationEntry(BaseModel):
    quote_id: str
    source_asset_id: str
    input_amount: Decimal
    consumed_at: Optional[datetime] = None


class ReconciliationReport(BaseModel):
    """Items an operator has to resolve by hand."""

    generated_at: datetime
    late_deposits: list[LateDepositEntry] = Field(default_factory=list)
    partial_deposits: list[PartialDepositEntry] = Field(default_factory=list)
    failed_allocations: list[FailedAllocationEntry] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.late_deposits or self.partial_deposits or self.failed_allocations)


class ReconciliationService:
    """Builds reconciliation reports and repairs orphaned quotes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def build_report(self, limit: int = 100) -> ReconciliationReport:
        """List late deposits, short expired orders and failed allocations."""
        report = ReconciliationReport(generated_at=self.clock())

        async with session_scope(self.session_factory) as session:
            repo = SwapRepository(session)

            for order in await repo.get_expired_orders_with_deposits(limit):
                for deposit in order.deposits:
                    if deposit.late:
                        report.late_deposits.append(
                            LateDepositEntry(
                                order_id=order.id,
                                tx_reference=deposit.tx_reference,
                                amount=deposit.amount,
                                asset_id=deposit.asset_id,
                                memo=deposit.memo,
                                observed_at=deposit.observed_at,
                            )
                        )

                received = order.received_amount
                if received > 0:
                    report.partial_deposits.append(
                        PartialDepositEntry(
                            order_id=order.id,
                            source_asset_id=order.source_asset_id,
                            expected_input_amount=order.expected_input_amount,
                            received_amount=received,
                            deposit_address=order.deposit_address,
                            deposit_memo=order.deposit_memo,
                            deposit_deadline=order.deposit_deadline,
                        )
                    )

            for quote in await repo.get_quotes_by_state(QuoteState.ALLOCATION_FAILED, limit):
                report.failed_allocations.append(
                    FailedAllocationEntry(
                        quote_id=quote.id,
                        source_asset_id=quote.source_asset_id,
                        input_amount=quote.input_amount,
                        consumed_at=quote.consumed_at,
                    )
                )

        return report

    async def reconcile_orphaned_quotes(self) -> int:
        """Mark consumed quotes that have no order as ``allocation_failed``.

        Accepting a quote commits the quote, binding and order together, so
        an orphan only appears if that transaction was interrupted outside
        the database's guarantees. Run at startup.
        """
        async with session_scope(self.session_factory) as session:
            orphans = await SwapRepository(session).get_orphaned_quotes()
            for quote in orphans:
                quote.state = QuoteState.ALLOCATION_FAILED
                logger.error(
                    f"Quote {quote.id} was consumed without an order; marked allocation_failed"
                )
        return len(orphans)
