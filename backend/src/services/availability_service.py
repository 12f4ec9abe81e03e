"""
Availability service: the public read path.

Computes bookable slots for one business, appointment type and date range by
combining weekly rules, date overrides, existing bookings and external busy
intervals. Results for single-day requests are cached; external busy intervals
are cached per (business, date) and fetched in one batched call for every
cache-miss date of a request.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import BUSY_FETCH_TIMEOUT_SECONDS
from core.constants import (
    APPOINTMENT_STATUS_CANCELLED,
    DEFAULT_AVAILABILITY_DAYS,
    DEFAULT_AVAILABLE_DATES_DAYS_AHEAD,
    MAX_AVAILABILITY_RANGE_DAYS,
    MAX_PREWARM_DAYS,
)
from core.exceptions import InactiveError, InternalError, NotFoundError, ValidationFailedError
from models import Appointment, AppointmentType, AvailabilityRule, DateOverride, User
from services.calendar_gateway import BusyIntervalProvider
from services.slot_cache import SlotCache
from services.slot_generator import BookedInterval, DayWindow, Slot, generate_day_slots, resolve_day_window
from utils.datetime_utils import date_range, local_day_bounds, local_today
from utils.interval_utils import Interval, clip_to

logger = logging.getLogger(__name__)

STAGE_USER_LOOKUP = "user_lookup"
STAGE_APPOINTMENT_TYPE_LOOKUP = "appointment_type_lookup"
STAGE_RULE_FETCH = "rule_fetch"
STAGE_APPOINTMENT_FETCH = "appointment_fetch"


@dataclass
class DaySlots:
    date: date
    slots: Sequence[Slot]

    def to_dict(self) -> dict:
        return {"date": self.date.isoformat(), "slots": [slot.to_dict() for slot in self.slots]}


@dataclass
class AvailabilityResult:
    appointment_type: AppointmentType
    timezone: str
    days: List[DaySlots] = field(default_factory=list)
    cached: bool = False


@dataclass
class AvailableDatesResult:
    appointment_type: AppointmentType
    timezone: str
    dates: Sequence[date] = ()
    cached: bool = False


def rule_day_index(day: date) -> int:
    """Day-of-week index used by availability rules (0=Sunday)."""
    return (day.weekday() + 1) % 7


class AvailabilityService:
    """
    Orchestrates rule lookup, caching, busy-interval fetch and slot generation.

    Built once at startup with the shared cache and the busy-interval provider.
    """

    def __init__(
        self,
        cache: SlotCache,
        busy_provider: BusyIntervalProvider,
        busy_timeout_seconds: float = BUSY_FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self.cache = cache
        self.busy_provider = busy_provider
        self.busy_timeout_seconds = busy_timeout_seconds

    # Lookups

    @staticmethod
    def resolve_user(db: Session, user_id: Optional[int] = None, widget_id: Optional[str] = None) -> User:
        """
        Resolve a business by id or by public widget id.

        Raises:
            ValidationFailedError: If neither identifier is given
            NotFoundError: If no business matches
            InactiveError: If the business has been deactivated
            InternalError: On storage failure (stage ``user_lookup``)
        """
        if user_id is None and not widget_id:
            raise ValidationFailedError("userId or widgetId is required", stage=STAGE_USER_LOOKUP)
        try:
            query = db.query(User)
            if user_id is not None:
                user = query.filter(User.id == user_id).first()
            else:
                user = query.filter(User.widget_id == widget_id).first()
        except SQLAlchemyError as e:
            logger.exception(f"[{STAGE_USER_LOOKUP}] Failed to load user: {e}")
            raise InternalError("Failed to load business", stage=STAGE_USER_LOOKUP)

        if user is None:
            raise NotFoundError("User not found", stage=STAGE_USER_LOOKUP)
        if not user.is_active:
            raise InactiveError("This business is no longer accepting bookings", stage=STAGE_USER_LOOKUP)
        return user

    @staticmethod
    def get_appointment_type(db: Session, user: User, appointment_type_id: int) -> AppointmentType:
        """
        Load an appointment type owned by ``user`` and ensure it is active.

        Raises:
            NotFoundError: If absent or owned by another business
            InactiveError: If the type is disabled
            InternalError: On storage failure (stage ``appointment_type_lookup``)
        """
        try:
            appointment_type = db.query(AppointmentType).filter(
                AppointmentType.id == appointment_type_id,
                AppointmentType.user_id == user.id,
            ).first()
        except SQLAlchemyError as e:
            logger.exception(f"[{STAGE_APPOINTMENT_TYPE_LOOKUP}] Failed to load appointment type: {e}")
            raise InternalError("Failed to load appointment type", stage=STAGE_APPOINTMENT_TYPE_LOOKUP)

        if appointment_type is None:
            raise NotFoundError("Appointment type not found", stage=STAGE_APPOINTMENT_TYPE_LOOKUP)
        if not appointment_type.active:
            raise InactiveError("Appointment type is not active", stage=STAGE_APPOINTMENT_TYPE_LOOKUP)
        return appointment_type

    @staticmethod
    def _load_rules(
        db: Session, user: User, start_date: date, end_date: date
    ) -> Tuple[Dict[int, AvailabilityRule], Dict[date, DateOverride]]:
        try:
            rules = db.query(AvailabilityRule).filter(
                AvailabilityRule.user_id == user.id,
                AvailabilityRule.is_available.is_(True),
            ).all()
            overrides = db.query(DateOverride).filter(
                DateOverride.user_id == user.id,
                DateOverride.date >= start_date,
                DateOverride.date <= end_date,
            ).all()
        except SQLAlchemyError as e:
            logger.exception(f"[{STAGE_RULE_FETCH}] Failed to load availability rules: {e}")
            raise InternalError("Failed to load availability", stage=STAGE_RULE_FETCH)
        return {rule.day_of_week: rule for rule in rules}, {override.date: override for override in overrides}

    @staticmethod
    def _load_bookings(db: Session, user: User, range_start: datetime, range_end: datetime) -> List[BookedInterval]:
        # Pad the window so bookings just outside it still contribute their buffers
        pad = timedelta(days=1)
        try:
            rows = db.query(
                Appointment.start_time,
                Appointment.end_time,
                AppointmentType.buffer_before,
                AppointmentType.buffer_after,
            ).join(
                AppointmentType, Appointment.appointment_type_id == AppointmentType.id
            ).filter(
                Appointment.user_id == user.id,
                Appointment.status != APPOINTMENT_STATUS_CANCELLED,
                Appointment.start_time < range_end + pad,
                Appointment.end_time > range_start - pad,
            ).all()
        except SQLAlchemyError as e:
            logger.exception(f"[{STAGE_APPOINTMENT_FETCH}] Failed to load existing appointments: {e}")
            raise InternalError("Failed to load existing appointments", stage=STAGE_APPOINTMENT_FETCH)
        return [
            BookedInterval(start, end, buffer_before or 0, buffer_after or 0)
            for start, end, buffer_before, buffer_after in rows
        ]

    # Busy intervals

    async def _busy_by_day(self, user: User, days: Sequence[date]) -> Tuple[Dict[date, Tuple[Interval, ...]], bool]:
        """
        Busy intervals per day, from cache where possible.

        Every cache-miss day is covered by one provider call spanning the
        earliest to the latest miss. Returns the per-day map and whether the
        provider failed (in which case missing days are treated as free and
        nothing is cached for them).
        """
        busy: Dict[date, Tuple[Interval, ...]] = {}
        misses: List[date] = []
        for day in days:
            cached = self.cache.get_busy(user.id, day)
            if cached is None:
                misses.append(day)
            else:
                busy[day] = cached

        if not misses:
            return busy, False

        generation = self.cache.generation(user.id)
        fetch_start = local_day_bounds(misses[0], user.timezone)[0]
        fetch_end = local_day_bounds(misses[-1], user.timezone)[1]
        try:
            intervals = await asyncio.wait_for(
                self.busy_provider.fetch_busy_intervals(user, fetch_start, fetch_end),
                timeout=self.busy_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Busy interval fetch timed out after {self.busy_timeout_seconds}s for user {user.id}; "
                f"treating {len(misses)} day(s) as free",
                extra={"stage": "busy_fetch"},
            )
            return {**busy, **{day: () for day in misses}}, True
        except Exception as e:
            logger.warning(
                f"Busy interval fetch failed for user {user.id}: {e}; treating {len(misses)} day(s) as free",
                extra={"stage": "busy_fetch"},
            )
            return {**busy, **{day: () for day in misses}}, True

        for day in misses:
            day_start, day_end = local_day_bounds(day, user.timezone)
            bucket = tuple(clip_to(intervals, Interval(day_start, day_end)))
            self.cache.set_busy(user.id, day, bucket, generation=generation)
            busy[day] = bucket
        return busy, False

    # Computation

    async def _compute(
        self,
        db: Session,
        user: User,
        appointment_type: AppointmentType,
        days: List[date],
    ) -> Tuple[List[DaySlots], bool]:
        rules, overrides = self._load_rules(db, user, days[0], days[-1])

        windows: Dict[date, DayWindow] = {}
        for day in days:
            window = resolve_day_window(day, user.timezone, rules.get(rule_day_index(day)), overrides.get(day))
            if window is not None:
                windows[day] = window

        if not windows:
            return [DaySlots(day, ()) for day in days], False

        range_start = local_day_bounds(days[0], user.timezone)[0]
        range_end = local_day_bounds(days[-1], user.timezone)[1]
        bookings = self._load_bookings(db, user, range_start, range_end)

        open_days = [day for day in days if day in windows]
        busy, degraded = await self._busy_by_day(user, open_days)

        results: List[DaySlots] = []
        for day in days:
            window = windows.get(day)
            if window is None:
                results.append(DaySlots(day, ()))
                continue
            day_bookings = [
                booking for booking in bookings
                if booking.blocked().start < window.end and booking.blocked().end > window.start
            ]
            slots = generate_day_slots(
                window.start,
                window.end,
                appointment_type.duration,
                appointment_type.buffer_before or 0,
                appointment_type.buffer_after or 0,
                day_bookings,
                busy.get(day, ()),
                user.timezone,
            )
            results.append(DaySlots(day, tuple(slots)))
        return results, degraded

    # Public operations

    async def get_slots(
        self,
        db: Session,
        appointment_type_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        user_id: Optional[int] = None,
        widget_id: Optional[str] = None,
    ) -> AvailabilityResult:
        """
        Compute slots for every date in ``[start_date, end_date]``.

        Args:
            db: Database session
            appointment_type_id: Appointment type to generate slots for
            start_date: First business-local date (defaults to today in the business timezone)
            end_date: Last date, inclusive (defaults to a 7-day range)
            user_id: Business id (either this or widget_id)
            widget_id: Public widget id

        Returns:
            AvailabilityResult with one DaySlots per date in order

        Raises:
            BookingEngineError subclasses for lookup and validation failures
        """
        user = self.resolve_user(db, user_id=user_id, widget_id=widget_id)
        appointment_type = self.get_appointment_type(db, user, appointment_type_id)

        start_date = start_date or local_today(user.timezone)
        end_date = end_date or start_date + timedelta(days=DEFAULT_AVAILABILITY_DAYS - 1)
        if end_date < start_date:
            raise ValidationFailedError("endDate must not be before startDate")
        if (end_date - start_date).days + 1 > MAX_AVAILABILITY_RANGE_DAYS:
            raise ValidationFailedError(f"Date range cannot exceed {MAX_AVAILABILITY_RANGE_DAYS} days")

        single_day = start_date == end_date
        if single_day:
            cached_slots = self.cache.get_slots(user.id, appointment_type.id, start_date)
            if cached_slots is not None:
                logger.debug(f"Slot cache hit for user {user.id}, type {appointment_type.id}, {start_date}")
                return AvailabilityResult(
                    appointment_type, user.timezone, [DaySlots(start_date, cached_slots)], cached=True
                )

        generation = self.cache.generation(user.id)
        days, degraded = await self._compute(db, user, appointment_type, date_range(start_date, end_date))

        if single_day and not degraded:
            self.cache.set_slots(user.id, appointment_type.id, start_date, days[0].slots, generation=generation)

        return AvailabilityResult(appointment_type, user.timezone, days, cached=False)

    def get_available_dates(
        self,
        db: Session,
        appointment_type_id: int,
        days_ahead: int = DEFAULT_AVAILABLE_DATES_DAYS_AHEAD,
        user_id: Optional[int] = None,
        widget_id: Optional[str] = None,
    ) -> AvailableDatesResult:
        """
        Dates from today through ``today + days_ahead`` that have a window long
        enough for at least one slot. Existing bookings are not considered.
        """
        if days_ahead < 0 or days_ahead > MAX_AVAILABILITY_RANGE_DAYS * 3:
            raise ValidationFailedError("daysAhead is out of range")

        user = self.resolve_user(db, user_id=user_id, widget_id=widget_id)
        appointment_type = self.get_appointment_type(db, user, appointment_type_id)

        cached = self.cache.get_dates(user.id, appointment_type.id, days_ahead)
        if cached is not None:
            return AvailableDatesResult(appointment_type, user.timezone, cached, cached=True)

        generation = self.cache.generation(user.id)
        today = local_today(user.timezone)
        days = date_range(today, today + timedelta(days=days_ahead))
        rules, overrides = self._load_rules(db, user, days[0], days[-1])

        slot_length = timedelta(minutes=appointment_type.duration)
        available: List[date] = []
        for day in days:
            window = resolve_day_window(day, user.timezone, rules.get(rule_day_index(day)), overrides.get(day))
            if window is not None and window.end - window.start >= slot_length:
                available.append(day)

        self.cache.set_dates(user.id, appointment_type.id, days_ahead, available, generation=generation)
        return AvailableDatesResult(appointment_type, user.timezone, tuple(available), cached=False)

    async def prewarm(
        self,
        db: Session,
        appointment_type_id: int,
        days: int = DEFAULT_AVAILABILITY_DAYS,
        user_id: Optional[int] = None,
        widget_id: Optional[str] = None,
    ) -> int:
        """
        Compute and cache single-day slot arrays for the next ``days`` days.

        Uses one batched busy-interval fetch for the whole span. Returns the
        number of days cached (zero if the busy fetch degraded).
        """
        if days < 1 or days > MAX_PREWARM_DAYS:
            raise ValidationFailedError(f"days must be between 1 and {MAX_PREWARM_DAYS}")

        user = self.resolve_user(db, user_id=user_id, widget_id=widget_id)
        appointment_type = self.get_appointment_type(db, user, appointment_type_id)

        generation = self.cache.generation(user.id)
        today = local_today(user.timezone)
        results, degraded = await self._compute(
            db, user, appointment_type, date_range(today, today + timedelta(days=days - 1))
        )
        if degraded:
            logger.warning(f"Skipping prewarm cache fill for user {user.id}: busy intervals unavailable")
            return 0

        stored = 0
        for day_slots in results:
            if self.cache.set_slots(
                user.id, appointment_type.id, day_slots.date, day_slots.slots, generation=generation
            ):
                stored += 1
        if stored < len(results):
            logger.info(f"Prewarm for user {user.id} overlapped an invalidation; cached {stored} of {len(results)} day(s)")
        else:
            logger.info(f"Prewarmed {stored} day(s) of slots for user {user.id}, type {appointment_type.id}")
        return stored
