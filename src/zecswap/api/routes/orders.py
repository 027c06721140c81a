"""Swap order endpoints."""

from fastapi import APIRouter, Depends, status

from zecswap.api.dependencies import get_core
from zecswap.services.container import SwapCore
from zecswap.web.contracts.orders import AcceptQuoteRequest, OrderStatusView

router = APIRouter()


@router.post("/orders", response_model=OrderStatusView, status_code=status.HTTP_201_CREATED)
async def accept_quote(request: AcceptQuoteRequest, core: SwapCore = Depends(get_core)) -> OrderStatusView:
    """Accept a quote and get the deposit instructions for the new order."""
    order = await core.allocator.accept_quote(request.quote_id, request.destination_address)
    return await core.status.get_status(order.id)


@router.get("/orders/{order_id}", response_model=OrderStatusView)
async def get_order_status(order_id: str, core: SwapCore = Depends(get_core)) -> OrderStatusView:
    """Get an order's current status, deposits and countdown."""
    return await core.status.get_status(order_id)


@router.post("/orders/{order_id}/deposit-sent", response_model=OrderStatusView)
async def acknowledge_deposit_sent(order_id: str, core: SwapCore = Depends(get_core)) -> OrderStatusView:
    """Record the user's "I have sent the deposit" hint. Does not change status."""
    await core.orders.acknowledge_deposit_sent(order_id)
    return await core.status.get_status(order_id)
