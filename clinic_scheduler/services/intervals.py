"""Half-open interval predicates shared by every scheduling check."""

from datetime import datetime


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """True when ``[a_start, a_end)`` and ``[b_start, b_end)`` intersect.

    An interval ending exactly when another begins does not overlap it.
    """
    return a_start < b_end and b_start < a_end


def contains(outer_start: datetime, outer_end: datetime, inner_start: datetime, inner_end: datetime) -> bool:
    return outer_start <= inner_start and inner_end <= outer_end


def overlaps_any(start: datetime, end: datetime, intervals) -> bool:
    return any(overlaps(start, end, other.start_time, other.end_time) for other in intervals)


def contained_in_any(start: datetime, end: datetime, windows) -> bool:
    """True when ``[start, end)`` lies entirely inside a single window."""
    return any(contains(window.start_time, window.end_time, start, end) for window in windows)
