"""
Slot generation for a single business day.

Pure functions only: given one day's resolved availability window, the
appointment type's duration and buffers, the business's existing bookings and
its external busy intervals, produce the day's candidate slots with an
availability flag. Nothing here touches storage, the cache or the network.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from utils.datetime_utils import (
    instant_to_local_display,
    local_wall_clock_to_instant,
    to_iso_utc,
)
from utils.interval_utils import Interval, intervals_overlap


@dataclass(frozen=True)
class BookedInterval:
    """An existing non-cancelled appointment with its own type's buffers."""

    start: datetime
    end: datetime
    buffer_before: int = 0
    buffer_after: int = 0

    def blocked(self) -> Interval:
        return Interval(self.start, self.end).buffered(self.buffer_before, self.buffer_after)


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    start_local: str
    end_local: str
    available: bool

    def to_dict(self) -> dict:
        return {
            "start": to_iso_utc(self.start),
            "end": to_iso_utc(self.end),
            "startLocal": self.start_local,
            "endLocal": self.end_local,
            "available": self.available,
        }


@dataclass(frozen=True)
class DayWindow:
    """A resolved availability window for one business-local date."""

    day: date
    start: datetime
    end: datetime


def resolve_day_window(
    day: date,
    tz_name: str,
    rule: Optional[object],
    override: Optional[object],
) -> Optional[DayWindow]:
    """
    Resolve the effective window for one date.

    An override always wins over the recurring rule. An override that is
    unavailable, or available without both times, closes the day. A day with
    no override and no available rule has no window.

    Args:
        day: Business-local date
        tz_name: Business IANA timezone
        rule: AvailabilityRule-like object (start_time, end_time, is_available) or None
        override: DateOverride-like object (is_available, start_time, end_time) or None

    Returns:
        The window as absolute instants, or None when the day is closed
    """
    if override is not None:
        if not override.is_available or not override.start_time or not override.end_time:
            return None
        start_wall, end_wall = override.start_time, override.end_time
    elif rule is not None and rule.is_available:
        start_wall, end_wall = rule.start_time, rule.end_time
    else:
        return None

    start = local_wall_clock_to_instant(day, start_wall, tz_name)
    end = local_wall_clock_to_instant(day, end_wall, tz_name)
    if end <= start:
        return None
    return DayWindow(day, start, end)


def candidate_intervals(day_start: datetime, day_end: datetime, duration: int) -> List[Interval]:
    """
    Walk the window in steps of exactly ``duration`` minutes.

    Buffers never affect spacing. A candidate whose end would pass ``day_end``
    is dropped, so a duration longer than the window yields nothing.
    """
    if duration <= 0 or day_end <= day_start:
        return []
    step = timedelta(minutes=duration)
    candidates: List[Interval] = []
    cursor = day_start
    while cursor + step <= day_end:
        candidates.append(Interval(cursor, cursor + step))
        cursor += step
    return candidates


def find_conflicts(tests: Sequence[Interval], blockers: Iterable[Interval]) -> List[bool]:
    """
    Batch conflict check of chronological test windows against blockers.

    One sweep over both lists sorted by start; each pair that could intersect is
    decided by ``intervals_overlap``. Returns one flag per test window.
    """
    ordered = sorted(blockers, key=lambda interval: interval.start)
    flags: List[bool] = []
    low = 0
    for test in tests:
        # Blockers ending before this window cannot reach any later window either
        while low < len(ordered) and ordered[low].end < test.start:
            low += 1
        conflict = False
        index = low
        while index < len(ordered) and ordered[index].start <= test.end:
            if intervals_overlap(test, ordered[index]):
                conflict = True
                break
            index += 1
        flags.append(conflict)
    return flags


def generate_day_slots(
    day_start: datetime,
    day_end: datetime,
    duration: int,
    buffer_before: int,
    buffer_after: int,
    existing: Iterable[BookedInterval],
    busy: Iterable[Interval],
    tz_name: str,
) -> List[Slot]:
    """
    Generate one day's slots with availability flags.

    Each candidate is tested with its buffered window
    ``[start - buffer_before, end + buffer_after]`` against every existing
    appointment's own buffered window and against every external busy interval.

    Args:
        day_start: Window start instant
        day_end: Window end instant
        duration: Appointment length in minutes (also the slot step)
        buffer_before: Minutes of padding before each candidate
        buffer_after: Minutes of padding after each candidate
        existing: Non-cancelled appointments intersecting the day
        busy: External busy intervals for the day
        tz_name: Business timezone for the display strings

    Returns:
        Slots in chronological order; empty when the window fits none
    """
    candidates = candidate_intervals(day_start, day_end, duration)
    if not candidates:
        return []

    tests = [candidate.buffered(buffer_before, buffer_after) for candidate in candidates]
    blockers = [booking.blocked() for booking in existing]
    blockers.extend(busy)
    conflicts = find_conflicts(tests, blockers)

    return [
        Slot(
            start=candidate.start,
            end=candidate.end,
            start_local=instant_to_local_display(candidate.start, tz_name),
            end_local=instant_to_local_display(candidate.end, tz_name),
            available=not conflict,
        )
        for candidate, conflict in zip(candidates, conflicts)
    ]
