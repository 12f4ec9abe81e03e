"""
Interval arithmetic shared by the read path and the commit path.

``intervals_overlap`` is the single overlap predicate used both when slots are
generated and when a booking is re-checked at commit time, so what looked
available and what gets rejected can never drift apart.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List


@dataclass(frozen=True)
class Interval:
    """Half-open span of absolute time [start, end)."""

    start: datetime
    end: datetime

    def buffered(self, before_minutes: int = 0, after_minutes: int = 0) -> "Interval":
        """Widen the interval by buffer padding on each side."""
        return Interval(
            self.start - timedelta(minutes=before_minutes),
            self.end + timedelta(minutes=after_minutes),
        )


def intervals_overlap(a: Interval, b: Interval) -> bool:
    """
    Three-way overlap test between two intervals.

    ``a`` conflicts with ``b`` when any of these hold:
    - a starts inside b: ``b.start <= a.start < b.end``
    - a ends inside b: ``b.start < a.end <= b.end``
    - a fully contains b: ``a.start <= b.start and a.end >= b.end``

    Touching endpoints (``a.end == b.start`` or ``a.start == b.end``) are not
    a conflict.
    """
    starts_inside = b.start <= a.start < b.end
    ends_inside = b.start < a.end <= b.end
    contains = a.start <= b.start and a.end >= b.end
    return starts_inside or ends_inside or contains


def overlaps_any(candidate: Interval, others: Iterable[Interval]) -> bool:
    return any(intervals_overlap(candidate, other) for other in others)


def clip_to(intervals: Iterable[Interval], window: Interval) -> List[Interval]:
    """Intervals that intersect ``window``, sorted by start. Not trimmed."""
    return sorted(
        (interval for interval in intervals if interval.start < window.end and interval.end > window.start),
        key=lambda interval: interval.start,
    )
