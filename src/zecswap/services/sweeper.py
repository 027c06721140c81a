"""Deadline sweeper: background task enforcing stored deadlines.

Expiry is never driven by callers. Each cycle expires overdue orders,
flags stale quotes and resumes conversions that were interrupted after
the deposit was confirmed.
"""

import asyncio
import logging
from typing import Optional

from zecswap.services.order_machine import OrderStateMachine
from zecswap.services.quote_engine import QuoteEngine
from zecswap.services.reconciliation import ReconciliationService

logger = logging.getLogger(__name__)


class DeadlineSweeper:
    """Runs periodic deadline sweeps in the event loop."""

    def __init__(
        self,
        order_machine: OrderStateMachine,
        quote_engine: QuoteEngine,
        reconciliation: ReconciliationService,
        interval_seconds: float = 15.0,
    ):
        self.order_machine = order_machine
        self.quote_engine = quote_engine
        self.reconciliation = reconciliation
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> dict:
        """Run one sweep cycle.

        Returns:
            Counts of expired orders, expired quotes and resumed conversions
        """
        expired_orders = await self.order_machine.expire_overdue()
        expired_quotes = await self.quote_engine.expire_stale_quotes()
        resumed = await self.order_machine.resume_conversions()

        if expired_orders:
            logger.info(f"Sweep expired {expired_orders} overdue order(s)")
        return {
            "expired_orders": expired_orders,
            "expired_quotes": expired_quotes,
            "resumed_conversions": resumed,
        }

    async def run(self) -> None:
        """Sweep until stopped. A failed cycle is logged and the loop goes on."""
        logger.info(f"Starting deadline sweeper (interval: {self.interval_seconds}s)")

        try:
            orphans = await self.reconciliation.reconcile_orphaned_quotes()
            if orphans:
                logger.warning(f"Marked {orphans} orphaned quote(s) allocation_failed")
        except Exception as e:
            logger.error(f"Orphaned quote reconciliation failed: {e}")

        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Sweeper error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("Deadline sweeper stopped")

    def start(self) -> asyncio.Task:
        """Start the sweep loop as a background task."""
        if not self.is_running:
            self._stopping.clear()
            self._task = asyncio.create_task(self.run(), name="deadline-sweeper")
        return self._task

    async def stop(self) -> None:
        """Signal the loop to stop and wait for the current cycle to finish."""
        if self._task is None:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.interval_seconds + 5)
        except asyncio.TimeoutError:
            self._task.cancel()
            logger.warning("Deadline sweeper did not stop in time, cancelled")
        self._task = None
