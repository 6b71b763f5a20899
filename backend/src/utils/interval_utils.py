"""
Half-open interval arithmetic used by the availability engine.

All intervals are [start, end) tuples of naive clinic-local datetimes.
"""

from datetime import datetime
from typing import Iterable, List, Sequence, Tuple

Interval = Tuple[datetime, datetime]


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Merge overlapping or touching intervals into a sorted, disjoint list."""
    merged: List[Interval] = []
    for start, end in sorted(intervals):
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def subtract_intervals(base: Interval, removals: Sequence[Interval]) -> List[Interval]:
    """
    Remove a set of intervals from one interval.

    Args:
        base: Interval to cut
        removals: Intervals to remove (any order, may overlap)

    Returns:
        Remaining pieces of base, sorted
    """
    pieces: List[Interval] = []
    cursor, base_end = base
    for start, end in merge_intervals(removals):
        if end <= cursor or start >= base_end:
            continue
        if start > cursor:
            pieces.append((cursor, start))
        cursor = max(cursor, end)
        if cursor >= base_end:
            break
    if cursor < base_end:
        pieces.append((cursor, base_end))
    return pieces


def is_covered(start: datetime, end: datetime, intervals: Iterable[Interval]) -> bool:
    """True when [start, end) lies entirely inside the union of intervals."""
    cursor = start
    for piece_start, piece_end in merge_intervals(intervals):
        if piece_end <= cursor:
            continue
        if piece_start > cursor:
            return False
        cursor = piece_end
        if cursor >= end:
            return True
    return cursor >= end


def max_concurrent_overlap(start: datetime, end: datetime, intervals: Iterable[Interval]) -> int:
    """
    Largest number of intervals sharing one instant within [start, end).

    Uses a sweep over interval boundaries; an interval ending at the same
    instant another begins does not count as overlapping it.
    """
    events: List[Tuple[datetime, int]] = []
    for piece_start, piece_end in intervals:
        clipped_start = max(piece_start, start)
        clipped_end = min(piece_end, end)
        if clipped_start < clipped_end:
            events.append((clipped_start, 1))
            events.append((clipped_end, -1))

    # Ends (-1) sort before starts (+1) at the same instant
    events.sort()
    current = 0
    peak = 0
    for _, delta in events:
        current += delta
        peak = max(peak, current)
    return peak
