"""Utility modules for zecswap."""

from zecswap.utils.clock import Clock, seconds_until, utcnow
from zecswap.utils.locks import KeyedLockRegistry, LockTimeoutError

__all__ = ["Clock", "KeyedLockRegistry", "LockTimeoutError", "seconds_until", "utcnow"]
