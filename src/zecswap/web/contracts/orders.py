"""Swap order contracts."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from zecswap.ledger.models import OrderStatus


class AcceptQuoteRequest(BaseModel):
    """Accept a quote and open an order."""

    quote_id: str = Field(..., description="Quote to accept")
    destination_address: str = Field(..., description="Transparent ZEC address (t1/t3)")


class DepositView(BaseModel):
    """An inbound transaction observed for an order."""

    tx_reference: str
    amount: Decimal
    asset_id: str
    memo: Optional[str] = None
    counted: bool = Field(..., description="Whether it counts toward the expected input")
    late: bool = Field(..., description="Arrived after the order expired")
    observed_at: datetime


class TransitionView(BaseModel):
    """One entry of the order's status history."""

    from_status: Optional[OrderStatus] = None
    to_status: OrderStatus
    reason: str
    at: datetime


class OrderStatusView(BaseModel):
    """Snapshot of an order as committed, with the countdown computed at read time."""

    order_id: str
    quote_id: str
    status: OrderStatus
    is_terminal: bool

    # Quote terms
    source_asset_id: str
    expected_input_amount: Decimal = Field(..., description="Source units to deposit")
    fee_amount: Decimal
    expected_output: Decimal = Field(..., description="ZEC to be delivered")
    exchange_rate: Decimal

    # Deposit target
    deposit_address: str
    deposit_memo: Optional[str] = Field(None, description="Memo / tag the deposit must carry")
    destination_address: str

    received_amount: Decimal = Field(..., description="Sum of matching deposits received before expiry")
    deposits: list[DepositView] = Field(default_factory=list)
    transitions: list[TransitionView] = Field(default_factory=list)

    created_at: datetime
    updated_at: datetime
    deposit_deadline: datetime
    deposit_sent_at: Optional[datetime] = None
    seconds_remaining: int = Field(..., description="Seconds left to deposit (0 unless pending)")

    settlement_reference: Optional[str] = None
    error_message: Optional[str] = None
