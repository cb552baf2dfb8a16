"""
Time Helpers
============
UTC clock and epoch-millisecond conversions used for persisted instants.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_millis(value: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds."""
    return int(round(value.timestamp() * 1000))


def from_millis(value: Optional[int]) -> Optional[datetime]:
    """Convert epoch milliseconds back to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
