"""
Datetime utilities for consistent time handling across the scheduling engine.

Scheduling instants (availability windows, slots, reservations) are stored
as naive datetimes interpreted as the clinic's local wall-clock time. Audit
timestamps (created_at/updated_at) are timezone-aware in the clinic offset.
"""

import logging
import math
from datetime import datetime, timezone, timedelta
from typing import Optional

from core.config import CLINIC_UTC_OFFSET_HOURS

logger = logging.getLogger(__name__)

CLINIC_TZ = timezone(timedelta(hours=CLINIC_UTC_OFFSET_HOURS))


def clinic_now() -> datetime:
    """
    Get the current timezone-aware datetime in the clinic offset.

    Returns:
        Current datetime with the clinic timezone
    """
    return datetime.now(CLINIC_TZ)


def clinic_local_now() -> datetime:
    """Current clinic wall-clock time as a naive datetime."""
    return clinic_now().replace(tzinfo=None)


def to_clinic_local(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to naive clinic local time.

    Naive datetimes are assumed to already be clinic local time and are
    returned unchanged. Aware datetimes are converted to the clinic offset
    and stripped of tzinfo.

    Args:
        dt: Datetime to normalize

    Returns:
        Naive clinic-local datetime, or None if input is None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(CLINIC_TZ).replace(tzinfo=None)


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Half-open interval overlap: [start_a, end_a) and [start_b, end_b) share an instant."""
    return start_a < end_b and start_b < end_a


def round_up_to_interval(dt: datetime, interval_minutes: int) -> datetime:
    """
    Round a datetime up to the next multiple of interval_minutes past midnight.

    Seconds and microseconds count toward rounding, so 09:00:30 with a
    15 minute interval becomes 09:15.

    Args:
        dt: Datetime to round
        interval_minutes: Grid size in minutes (must be positive)

    Returns:
        Datetime aligned to the grid, never earlier than dt
    """
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")
    midnight = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed_minutes = (dt - midnight).total_seconds() / 60
    steps = math.ceil(elapsed_minutes / interval_minutes)
    return midnight + timedelta(minutes=steps * interval_minutes)


def format_window(start: datetime, end: datetime) -> str:
    """Format a window for log messages, e.g. '2026-01-05 09:00-09:30'."""
    if start.date() == end.date():
        return f"{start:%Y-%m-%d %H:%M}-{end:%H:%M}"
    return f"{start:%Y-%m-%d %H:%M}-{end:%Y-%m-%d %H:%M}"
