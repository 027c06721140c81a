"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, Request

from zecswap.services.container import SwapCore


def get_core(request: Request) -> SwapCore:
    """The swap core attached to the running app."""
    return request.app.state.core


async def require_admin_token(request: Request, x_admin_token: str = Header(None)) -> bool:
    """Verify admin token from header.

    If ADMIN_TOKEN is not set, allows access (dev mode).
    """
    settings = get_core(request).settings

    if not settings.admin_token:
        # Dev mode - no token required
        return True

    if x_admin_token != settings.admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")

    return True
