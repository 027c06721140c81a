"""Watcher and settlement webhook endpoints.

The deposit watcher posts every inbound transaction it sees for an order's
deposit target; the conversion backend posts the outcome of each
conversion. Both are idempotent, so providers may redeliver freely.
"""

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from zecswap.api.dependencies import get_core
from zecswap.services.container import SwapCore
from zecswap.services.status import build_status_view
from zecswap.web.contracts.orders import OrderStatusView
from zecswap.web.contracts.webhooks import DepositAckResponse, DepositReport, SettlementReport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])


def verify_webhook_signature(
    payload: bytes,
    signature: str,
    secret: str,
    algorithm: str = "sha256",
) -> bool:
    """Verify webhook signature using HMAC.

    Args:
        payload: Raw request body
        signature: Hex signature from header, optionally prefixed "sha256="
        secret: Webhook secret key
        algorithm: Hash algorithm (sha256, sha512)

    Returns:
        True if signature is valid
    """
    if not secret:
        return True  # Skip verification if no secret configured

    # Remove any prefix like "sha256="
    if "=" in signature:
        signature = signature.split("=", 1)[1]

    mac = hmac.new(
        secret.encode(),
        payload,
        getattr(hashlib, algorithm),
    )
    expected = mac.hexdigest()

    return hmac.compare_digest(expected, signature.strip().lower())


async def verify_watcher_signature(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
) -> None:
    """Reject unsigned or mis-signed calls when WATCHER_WEBHOOK_SECRET is set."""
    secret = get_core(request).settings.watcher_webhook_secret
    if not secret:
        return

    body = await request.body()
    if not x_webhook_signature or not verify_webhook_signature(body, x_webhook_signature, secret):
        logger.warning(f"Invalid webhook signature on {request.url.path}")
        raise HTTPException(status_code=401, detail="Invalid signature")


@router.post(
    "/deposits",
    response_model=DepositAckResponse,
    dependencies=[Depends(verify_watcher_signature)],
)
async def handle_deposit_report(
    report: DepositReport,
    core: SwapCore = Depends(get_core),
) -> DepositAckResponse:
    """Record a deposit observed by the watcher.

    Redelivered transactions are acknowledged with ``duplicate=true``.
    Reports for expired orders are stored as late and reported back with
    ``late=true``.
    """
    ack = await core.orders.report_deposit(
        report.order_id,
        report.tx_reference,
        report.amount,
        report.asset_id,
        report.memo,
    )
    return DepositAckResponse(
        order_id=ack.order_id,
        tx_reference=ack.tx_reference,
        status=ack.status,
        duplicate=ack.duplicate,
        counted=ack.counted,
        late=ack.late,
    )


@router.post(
    "/settlements",
    response_model=OrderStatusView,
    dependencies=[Depends(verify_watcher_signature)],
)
async def handle_settlement_report(
    report: SettlementReport,
    core: SwapCore = Depends(get_core),
) -> OrderStatusView:
    """Apply a conversion outcome to a processing order."""
    order = await core.orders.report_settlement(
        report.order_id,
        report.succeeded,
        settlement_reference=report.settlement_reference,
        error=report.error,
    )
    return build_status_view(order, core.orders.clock())
