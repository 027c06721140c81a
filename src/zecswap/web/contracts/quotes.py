"""Quote contracts."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from zecswap.ledger.models import Quote, QuoteMode, QuoteState
from zecswap.utils.clock import seconds_until


class QuoteRequest(BaseModel):
    """Request for a quote into ZEC."""

    source_asset_id: str = Field(..., description="Catalog id of the asset to pay in")
    amount: Decimal = Field(..., description="Source units (pay) or ZEC (receive)")
    mode: QuoteMode = Field(default=QuoteMode.PAY, description="Which side amount describes")


class QuoteResponse(BaseModel):
    """A stored quote."""

    quote_id: str
    source_asset_id: str
    mode: QuoteMode
    requested_amount: Decimal
    input_amount: Decimal = Field(..., description="Source units to deposit")
    fee_amount: Decimal = Field(..., description="Fee in source units")
    expected_output: Decimal = Field(..., description="ZEC delivered")
    exchange_rate: Decimal = Field(..., description="ZEC per source unit after fee")
    issued_at: datetime
    expires_at: datetime
    state: QuoteState
    seconds_remaining: int = Field(..., description="Seconds until the quote expires")

    @classmethod
    def from_quote(cls, quote: Quote, now: datetime) -> "QuoteResponse":
        usable = quote.state == QuoteState.UNUSED
        return cls(
            quote_id=quote.id,
            source_asset_id=quote.source_asset_id,
            mode=quote.request_mode,
            requested_amount=quote.requested_amount,
            input_amount=quote.input_amount,
            fee_amount=quote.fee_amount,
            expected_output=quote.expected_output,
            exchange_rate=quote.exchange_rate,
            issued_at=quote.issued_at,
            expires_at=quote.expires_at,
            state=quote.state,
            seconds_remaining=seconds_until(quote.expires_at, now) if usable else 0,
        )
