"""Request and response contracts for the web layer.

These Pydantic models define the API interface for web clients and for
the deposit watcher and settlement webhooks.
"""

from zecswap.web.contracts.assets import AssetInfo, AssetListResponse
from zecswap.web.contracts.orders import (
    AcceptQuoteRequest,
    DepositView,
    OrderStatusView,
    TransitionView,
)
from zecswap.web.contracts.quotes import QuoteRequest, QuoteResponse
from zecswap.web.contracts.webhooks import (
    DepositAckResponse,
    DepositReport,
    SettlementReport,
)

__all__ = [
    # Asset contracts
    "AssetInfo",
    "AssetListResponse",
    # Quote contracts
    "QuoteRequest",
    "QuoteResponse",
    # Order contracts
    "AcceptQuoteRequest",
    "DepositView",
    "OrderStatusView",
    "TransitionView",
    # Webhook contracts
    "DepositAckResponse",
    "DepositReport",
    "SettlementReport",
]
