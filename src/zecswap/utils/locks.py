"""Keyed concurrency control for order transitions and address pools.

Each order id gets its own lock so transitions for one order are
linearized, and each asset id gets a pool lock so deposit allocation
never hands the same target to two concurrent orders. Locks for
different keys never contend with each other.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class KeyedLockRegistry:
    """Registry of asyncio locks keyed by an arbitrary string.

    Example:
        locks = KeyedLockRegistry("order")
        async with locks.hold(order_id, operation="report_deposit"):
            # Read-modify-write of the order here
            ...
    """

    def __init__(self, scope: str, timeout: Optional[float] = 30.0):
        """Initialize the registry.

        Args:
            scope: Label used in log messages (e.g. "order", "pool")
            timeout: Default maximum wait for a lock (None = wait forever)
        """
        self.scope = scope
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders and waiters per key; a lock is only dropped at zero
        self._refs: dict[str, int] = {}

    def get_lock(self, key: str) -> asyncio.Lock:
        """Get or create the lock for a key."""
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        operation: str = "operation",
        timeout: Optional[float] = None,
    ) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockTimeoutError: if the lock is not acquired in time
        """
        lock = self.get_lock(key)
        wait = timeout if timeout is not None else self.timeout
        self._refs[key] = self._refs.get(key, 0) + 1

        try:
            try:
                if wait:
                    await asyncio.wait_for(lock.acquire(), timeout=wait)
                else:
                    await lock.acquire()
            except asyncio.TimeoutError:
                logger.warning(f"Lock timeout for {self.scope} {key} after {wait}s: {operation}")
                raise LockTimeoutError(
                    f"Could not acquire {self.scope} lock for {key} within {wait}s"
                )

            logger.debug(f"Lock acquired for {self.scope} {key}: {operation}")
            try:
                yield
            finally:
                lock.release()
                logger.debug(f"Lock released for {self.scope} {key}: {operation}")
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]

    def discard(self, key: str) -> bool:
        """Forget the lock for a key nobody holds or awaits.

        Used once an order is terminal so the registry does not grow
        without bound. Returns True if the lock was dropped.
        """
        if key in self._locks and key not in self._refs:
            del self._locks[key]
            return True
        return False

    def __len__(self) -> int:
        return len(self._locks)
