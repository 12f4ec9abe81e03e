"""
Process-wide cache for computed availability.

Three keyed maps share one lock:
- per-day slot arrays, keyed by (user, appointment type, date), 1 h TTL
- per-day raw external busy intervals, keyed by (user, date), 15 min TTL
- available-date lists, keyed by (user, appointment type, days ahead), 1 h TTL

Values are stored as immutable tuples and replaced or deleted whole under the
lock, so a concurrent reader sees either the old value or the new one, never a
partially written array.

Each business carries an invalidation counter. Setters handed the counter
that was read before a computation skip the write when an invalidation landed
in between, so a slow computation cannot repopulate an entry that a booking
or cancellation just dropped.

One instance is built at startup and injected into the services that need it.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Generic, Hashable, Iterable, Optional, Sequence, Tuple, TypeVar

from core.constants import (
    BUSY_CACHE_TTL_SECONDS,
    DATES_CACHE_TTL_SECONDS,
    SLOT_CACHE_TTL_SECONDS,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    cached_at: float
    expires_at: float


class SlotCache:
    """Thread-safe TTL cache for slots, busy intervals and available dates."""

    def __init__(
        self,
        slot_ttl_seconds: int = SLOT_CACHE_TTL_SECONDS,
        busy_ttl_seconds: int = BUSY_CACHE_TTL_SECONDS,
        dates_ttl_seconds: int = DATES_CACHE_TTL_SECONDS,
        clock=time.monotonic,
    ) -> None:
        self._slot_ttl = slot_ttl_seconds
        self._busy_ttl = busy_ttl_seconds
        self._dates_ttl = dates_ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._slots: Dict[Tuple[int, int, date], CacheEntry[Tuple[Any, ...]]] = {}
        self._busy: Dict[Tuple[int, date], CacheEntry[Tuple[Any, ...]]] = {}
        self._dates: Dict[Tuple[int, int, int], CacheEntry[Tuple[date, ...]]] = {}
        self._generations: Dict[int, int] = {}
        self._hits = 0
        self._misses = 0

    # Generic helpers

    def _get(self, store: Dict[Any, CacheEntry[Any]], key: Hashable) -> Optional[CacheEntry[Any]]:
        with self._lock:
            entry = store.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= self._clock():
                del store[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry

    def _set(
        self,
        store: Dict[Any, CacheEntry[Any]],
        key: Tuple[Any, ...],
        value: Iterable[Any],
        ttl: int,
        generation: Optional[int],
    ) -> bool:
        frozen = tuple(value)
        now = self._clock()
        with self._lock:
            # A write computed before an invalidation of the same user is stale
            if generation is not None and generation != self._generations.get(key[0], 0):
                return False
            store[key] = CacheEntry(frozen, now, now + ttl)
            return True

    def generation(self, user_id: int) -> int:
        """
        Current invalidation counter for a business.

        Read it before computing a value and pass it to the matching setter;
        the write is dropped if the business was invalidated in between.
        """
        with self._lock:
            return self._generations.get(user_id, 0)

    # Slots

    def get_slots(self, user_id: int, appointment_type_id: int, day: date) -> Optional[Tuple[Any, ...]]:
        entry = self._get(self._slots, (user_id, appointment_type_id, day))
        return entry.value if entry else None

    def set_slots(
        self,
        user_id: int,
        appointment_type_id: int,
        day: date,
        slots: Sequence[Any],
        generation: Optional[int] = None,
    ) -> bool:
        return self._set(self._slots, (user_id, appointment_type_id, day), slots, self._slot_ttl, generation)

    # Busy intervals

    def get_busy(self, user_id: int, day: date) -> Optional[Tuple[Any, ...]]:
        entry = self._get(self._busy, (user_id, day))
        return entry.value if entry else None

    def set_busy(
        self, user_id: int, day: date, intervals: Sequence[Any], generation: Optional[int] = None
    ) -> bool:
        return self._set(self._busy, (user_id, day), intervals, self._busy_ttl, generation)

    # Available dates

    def get_dates(self, user_id: int, appointment_type_id: int, days_ahead: int) -> Optional[Tuple[date, ...]]:
        entry = self._get(self._dates, (user_id, appointment_type_id, days_ahead))
        return entry.value if entry else None

    def set_dates(
        self,
        user_id: int,
        appointment_type_id: int,
        days_ahead: int,
        dates: Sequence[date],
        generation: Optional[int] = None,
    ) -> bool:
        return self._set(self._dates, (user_id, appointment_type_id, days_ahead), dates, self._dates_ttl, generation)

    # Invalidation and maintenance

    def invalidate_user(self, user_id: int) -> int:
        """Drop every entry belonging to a business. Returns the number removed."""
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
            removed = 0
            for store in (self._slots, self._busy, self._dates):
                for key in [key for key in store if key[0] == user_id]:
                    del store[key]
                    removed += 1
        logger.debug(f"Invalidated {removed} cache entries for user {user_id}")
        return removed

    def invalidate_appointment_type(self, user_id: int, appointment_type_id: int) -> int:
        """Drop slot and date entries for one appointment type."""
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
            removed = 0
            for store in (self._slots, self._dates):
                for key in [key for key in store if key[0] == user_id and key[1] == appointment_type_id]:
                    del store[key]
                    removed += 1
        return removed

    def cleanup_expired(self) -> int:
        """Purge expired entries from all maps. Returns the number removed."""
        now = self._clock()
        with self._lock:
            removed = 0
            for store in (self._slots, self._busy, self._dates):
                for key in [key for key, entry in store.items() if entry.expires_at <= now]:
                    del store[key]
                    removed += 1
        if removed:
            logger.info(f"Slot cache cleanup removed {removed} expired entries")
        return removed

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "slot_entries": len(self._slots),
                "busy_entries": len(self._busy),
                "date_entries": len(self._dates),
                "hits": self._hits,
                "misses": self._misses,
            }

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()
            self._busy.clear()
            self._dates.clear()
            self._hits = 0
            self._misses = 0
