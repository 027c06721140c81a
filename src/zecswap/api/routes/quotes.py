"""Quote endpoints."""

from fastapi import APIRouter, Depends, status

from zecswap.api.dependencies import get_core
from zecswap.services.container import SwapCore
from zecswap.web.contracts.quotes import QuoteRequest, QuoteResponse

router = APIRouter()


@router.post("/quotes", response_model=QuoteResponse, status_code=status.HTTP_201_CREATED)
async def request_quote(request: QuoteRequest, core: SwapCore = Depends(get_core)) -> QuoteResponse:
    """Price a swap into ZEC. The quote holds for the configured window."""
    quote = await core.quotes.request_quote(request.source_asset_id, request.amount, request.mode)
    return QuoteResponse.from_quote(quote, core.quotes.clock())


@router.get("/quotes/{quote_id}", response_model=QuoteResponse)
async def get_quote(quote_id: str, core: SwapCore = Depends(get_core)) -> QuoteResponse:
    """Get a stored quote."""
    quote = await core.quotes.get_quote(quote_id)
    return QuoteResponse.from_quote(quote, core.quotes.clock())
