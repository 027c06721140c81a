"""Error taxonomy for the swap-order core.

Every error carries a stable ``code`` that the HTTP layer returns to
clients, so callers can branch on it without parsing messages.
"""

from typing import Optional


class SwapError(Exception):
    """Base class for all swap-order errors."""

    code = "swap_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code


# Input errors: rejected synchronously, no state change


class InvalidAmount(SwapError):
    """Amount is non-positive, unparseable or exceeds the asset's precision."""

    code = "invalid_amount"


class UnknownAsset(SwapError):
    """Asset id is not in the catalog."""

    code = "unknown_asset"


class InvalidDestinationAddress(SwapError):
    """Destination is not a valid transparent Zcash address."""

    code = "invalid_destination_address"


# Temporal errors


class QuoteExpired(SwapError):
    """Quote validity window has passed."""

    code = "quote_expired"


# Quote and order lookups


class QuoteNotFound(SwapError):
    code = "quote_not_found"


class QuoteAlreadyConsumed(SwapError):
    """Quote already backs an order (or failed allocation)."""

    code = "quote_already_consumed"


class OrderNotFound(SwapError):
    code = "order_not_found"


# Resource contention


class AllocationUnavailable(SwapError):
    """No free deposit target for the asset; retry once an order terminates."""

    code = "allocation_unavailable"


# External-report anomalies and state violations


class ReportRejected(SwapError):
    """Watcher report refers to an order that can no longer accept deposits."""

    code = "report_rejected"


class InvalidTransition(SwapError):
    """Attempted status change outside the order lifecycle table."""

    code = "invalid_transition"

    def __init__(self, current: str, target: str, order_id: Optional[str] = None):
        where = f" for order {order_id}" if order_id else ""
        super().__init__(f"Cannot move from {current} to {target}{where}")
        self.current = current
        self.target = target


# Upstream dependency failure


class RateUnavailable(SwapError):
    """Pricing source could not produce a rate."""

    code = "rate_unavailable"


# Concurrent writers


class OrderConflict(SwapError):
    """Order kept changing under another writer; the caller may retry."""

    code = "order_conflict"
