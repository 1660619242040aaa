"""Timestamp and duration utilities.

Probes time their exchanges with these so round trip values are
consistent everywhere.
"""

from datetime import datetime, timezone
from typing import Optional

from util.types import ROUND_TRIP_MAX


def now_utc() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def duration_ms(start: datetime, end: Optional[datetime] = None) -> float:
    """Calculate duration in milliseconds between two timestamps.

    If end is None, uses current time.
    """
    if end is None:
        end = now_utc()
    delta = end - start
    return delta.total_seconds() * 1000


def round_trip_ms(start: datetime, end: Optional[datetime] = None) -> int:
    """Elapsed milliseconds clamped into a round trip slot (0..65535)."""
    return clamp_round_trip(duration_ms(start, end))


def clamp_round_trip(value: float) -> int:
    return max(0, min(ROUND_TRIP_MAX, int(value)))


def minute_of_day(dt: Optional[datetime] = None) -> float:
    """Minutes since UTC midnight, used for daily slot scheduling."""
    if dt is None:
        dt = now_utc()
    return dt.hour * 60 + dt.minute + dt.second / 60
