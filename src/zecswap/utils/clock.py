"""Wall-clock helpers.

Timestamps are stored as naive UTC datetimes so values read back from
SQLite compare cleanly with freshly computed ones.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_until(deadline: datetime, now: datetime) -> int:
    """Whole seconds from ``now`` to ``deadline``, floored at zero."""
    remaining = (deadline - now).total_seconds()
    return max(0, int(remaining))
