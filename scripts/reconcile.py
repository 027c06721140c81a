#!/usr/bin/env python3
"""Swap Order Reconciliation Script.

Lists what needs an operator: late deposits on expired orders, expired
orders that received only part of their deposit, and quotes whose
acceptance never produced an order.

Usage:
    python scripts/reconcile.py [--repair-orphans] [--sweep] [--json]

Options:
    --repair-orphans  Mark consumed quotes without an order allocation_failed
    --sweep           Run one deadline sweep before reporting
    --json            Print the report as JSON
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from zecswap.ledger.database import close_db, init_db
from zecswap.services.container import build_core

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description="Swap Order Reconciliation")
    parser.add_argument("--repair-orphans", action="store_true", help="Repair orphaned quotes first")
    parser.add_argument("--sweep", action="store_true", help="Run one deadline sweep first")
    parser.add_argument("--limit", type=int, default=100, help="Maximum entries per section")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    args = parser.parse_args()

    # Initialize database
    await init_db()
    core = build_core()
    await core.catalog.refresh()

    try:
        if args.repair_orphans:
            repaired = await core.reconciliation.reconcile_orphaned_quotes()
            logger.info(f"Repaired {repaired} orphaned quote(s)")

        if args.sweep:
            counts = await core.sweeper.run_once()
            logger.info(f"Sweep: {counts}")

        report = await core.reconciliation.build_report(limit=args.limit)
    finally:
        await close_db()

    if args.json:
        print(report.model_dump_json(indent=2))
        return report

    logger.info("=" * 60)
    logger.info("SWAP ORDER RECONCILIATION")
    logger.info("=" * 60)

    logger.info(f"Late deposits: {len(report.late_deposits)}")
    for d in report.late_deposits:
        logger.info(f"  {d.order_id}: {d.amount} {d.asset_id} tx {d.tx_reference} at {d.observed_at}")

    logger.info(f"Partial deposits on expired orders: {len(report.partial_deposits)}")
    for p in report.partial_deposits:
        logger.info(
            f"  {p.order_id}: {p.received_amount}/{p.expected_input_amount} {p.source_asset_id} "
            f"to {p.deposit_address}" + (f" memo {p.deposit_memo}" if p.deposit_memo else "")
        )

    logger.info(f"Failed allocations: {len(report.failed_allocations)}")
    for q in report.failed_allocations:
        logger.info(f"  {q.quote_id}: {q.input_amount} {q.source_asset_id} consumed at {q.consumed_at}")

    logger.info("=" * 60)
    logger.info("CLEAN" if report.is_clean else "NEEDS ATTENTION")
    return report


if __name__ == "__main__":
    asyncio.run(main())
