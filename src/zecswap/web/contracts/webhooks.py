"""Contracts for the deposit watcher and settlement webhooks."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from zecswap.ledger.models import OrderStatus


class DepositReport(BaseModel):
    """An inbound transaction seen by the deposit watcher."""

    order_id: str
    tx_reference: str = Field(..., description="Chain transaction id (idempotency key)")
    amount: Decimal = Field(..., description="Observed amount in source units")
    asset_id: str = Field(..., description="Asset actually observed")
    memo: Optional[str] = Field(None, description="Memo / destination tag, if any")


class DepositAckResponse(BaseModel):
    """Acknowledgment of a deposit report."""

    success: bool = True
    order_id: str
    tx_reference: str
    status: OrderStatus
    duplicate: bool = False
    counted: bool = False
    late: bool = False


class SettlementReport(BaseModel):
    """Outcome of a conversion reported by the conversion backend."""

    order_id: str
    succeeded: bool
    settlement_reference: Optional[str] = Field(None, description="Payout transaction id")
    error: Optional[str] = Field(None, description="Failure reason when not succeeded")
