"""
Booking commit service.

Commits a visitor's booking only when every hard gate passes, in order:
lookup, plan limit, payment verification, and the authoritative commit-time
conflict re-check. The re-check and the insert run back to back with no await
between them, under a row lock on the business where the database supports
``SELECT ... FOR UPDATE``; a partial unique index on confirmed start times backs
this up at the storage layer.

External calendar busy time is deliberately not re-checked here. Doing so would
put a live external call inside the write path; a slot that became busy
externally after the visitor loaded availability can still be booked.

Once the appointment is committed, usage counting, calendar sync, cache
invalidation and notifications run as isolated post-commit tasks that never
fail the booking.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.constants import (
    APPOINTMENT_STATUS_CANCELLED,
    APPOINTMENT_STATUS_CONFIRMED,
    CANCELLATION_TOKEN_BYTES,
    PAYMENT_STATUS_DEPOSIT_PAID,
    PAYMENT_STATUS_PAID,
)
from core.exceptions import (
    InternalError,
    PaymentAlreadyUsedError,
    PaymentRejectedError,
    PaymentRequiredError,
    SlotTakenError,
    UsageLimitExceededError,
    ValidationFailedError,
)
from models import Appointment, AppointmentType, User
from services.availability_service import AvailabilityService
from services.calendar_gateway import CalendarEventWriter
from services.notification_service import NotificationService
from services.payment_service import PaymentIntentInfo, PaymentProvider
from services.post_commit import PostCommitTasks
from services.slot_cache import SlotCache
from services.usage_service import UsageLimiter
from utils.datetime_utils import ensure_utc
from utils.interval_utils import Interval, intervals_overlap

logger = logging.getLogger(__name__)


@dataclass
class BookingRequest:
    widget_id: str
    appointment_type_id: int
    start_time: datetime
    visitor_name: str
    visitor_email: str
    timezone: str = "UTC"
    visitor_phone: Optional[str] = None
    notes: Optional[str] = None
    form_responses: Optional[Dict[str, Any]] = None
    payment_intent_id: Optional[str] = None


@dataclass(frozen=True)
class VerifiedPayment:
    payment_intent_id: str
    payment_status: str
    amount_paid: int


def generate_cancellation_token() -> str:
    """128 hex characters from a CSPRNG."""
    return secrets.token_hex(CANCELLATION_TOKEN_BYTES)


def find_conflicting_appointment(
    db: Session,
    user_id: int,
    start: datetime,
    end: datetime,
    buffer_before: int,
    buffer_after: int,
) -> Optional[Appointment]:
    """
    First confirmed appointment whose buffered window overlaps the proposed one.

    Both sides apply their own type's buffers and the decision is made by the
    same predicate the slot generator uses.
    """
    candidate = Interval(start, end).buffered(buffer_before, buffer_after)
    # Buffers are minutes; a day of padding is enough to catch any neighbour
    pad = timedelta(days=1)
    rows = db.query(Appointment, AppointmentType.buffer_before, AppointmentType.buffer_after).join(
        AppointmentType, Appointment.appointment_type_id == AppointmentType.id
    ).filter(
        Appointment.user_id == user_id,
        Appointment.status != APPOINTMENT_STATUS_CANCELLED,
        Appointment.start_time < end + pad,
        Appointment.end_time > start - pad,
    ).all()
    for existing, existing_before, existing_after in rows:
        blocked = Interval(existing.start_time, existing.end_time).buffered(existing_before or 0, existing_after or 0)
        if intervals_overlap(candidate, blocked):
            return existing
    return None


class BookingService:
    """Commits bookings and dispatches their side effects."""

    def __init__(
        self,
        cache: SlotCache,
        payment_provider: PaymentProvider,
        calendar_writer: CalendarEventWriter,
        usage_limiter: UsageLimiter,
        notifications: NotificationService,
    ) -> None:
        self.cache = cache
        self.payment_provider = payment_provider
        self.calendar_writer = calendar_writer
        self.usage_limiter = usage_limiter
        self.notifications = notifications

    async def _verify_payment(
        self, db: Session, appointment_type: AppointmentType, payment_intent_id: Optional[str]
    ) -> Optional[VerifiedPayment]:
        """
        Payment gate for paid appointment types.

        Raises:
            PaymentRequiredError: No payment intent supplied
            PaymentAlreadyUsedError: The intent already backs another appointment
            PaymentRejectedError: Not succeeded, or issued for a different type
            UpstreamTimeoutError / UpstreamRejectedError: Provider failure
        """
        if not appointment_type.require_payment:
            return None

        if not payment_intent_id:
            raise PaymentRequiredError(details={
                "requiresPayment": True,
                "price": appointment_type.price,
                "currency": appointment_type.currency,
                "depositPercent": appointment_type.deposit_percent,
            })

        already_used = db.query(Appointment.id).filter(
            Appointment.payment_intent_id == payment_intent_id
        ).first()
        if already_used is not None:
            logger.warning(f"Payment intent {payment_intent_id} replayed for a second booking")
            raise PaymentAlreadyUsedError()

        intent: PaymentIntentInfo = await self.payment_provider.retrieve_payment_intent(payment_intent_id)

        if intent.status != "succeeded":
            raise PaymentRejectedError(
                "Payment has not been completed",
                details={"paymentStatus": intent.status},
            )
        if intent.metadata.get("appointmentTypeId") != str(appointment_type.id):
            logger.warning(
                f"Payment intent {payment_intent_id} was issued for appointment type "
                f"{intent.metadata.get('appointmentTypeId')!r}, not {appointment_type.id}"
            )
            raise PaymentRejectedError("Payment does not match this appointment type")

        is_deposit = intent.metadata.get("isDeposit") == "true"
        return VerifiedPayment(
            payment_intent_id=intent.id,
            payment_status=PAYMENT_STATUS_DEPOSIT_PAID if is_deposit else PAYMENT_STATUS_PAID,
            amount_paid=intent.amount_received or intent.amount,
        )

    def _insert_appointment(
        self,
        db: Session,
        user: User,
        appointment_type: AppointmentType,
        request: BookingRequest,
        start: datetime,
        end: datetime,
        payment: Optional[VerifiedPayment],
    ) -> Appointment:
        """Conflict re-check and insert as one critical section."""
        try:
            # Serialize concurrent bookings for the same business (no-op on SQLite)
            db.query(User.id).filter(User.id == user.id).with_for_update().one()

            conflict = find_conflicting_appointment(
                db, user.id, start, end,
                appointment_type.buffer_before or 0,
                appointment_type.buffer_after or 0,
            )
            if conflict is not None:
                db.rollback()
                logger.info(f"Slot taken for user {user.id} at {start.isoformat()} (conflicts with appointment {conflict.id})")
                raise SlotTakenError()

            appointment = Appointment(
                user_id=user.id,
                appointment_type_id=appointment_type.id,
                start_time=start,
                end_time=end,
                timezone=request.timezone,
                status=APPOINTMENT_STATUS_CONFIRMED,
                visitor_name=request.visitor_name,
                visitor_email=request.visitor_email,
                visitor_phone=request.visitor_phone,
                notes=request.notes,
                form_responses=request.form_responses,
                cancellation_token=generate_cancellation_token(),
                payment_intent_id=payment.payment_intent_id if payment else None,
                payment_status=payment.payment_status if payment else None,
                amount_paid=payment.amount_paid if payment else None,
            )
            db.add(appointment)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            if payment and "payment_intent_id" in str(e.orig):
                raise PaymentAlreadyUsedError()
            logger.info(f"Storage guard rejected concurrent booking for user {user.id} at {start.isoformat()}")
            raise SlotTakenError()
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(f"Failed to persist appointment: {e}")
            raise InternalError("Failed to save appointment")

        db.refresh(appointment)
        return appointment

    def _side_effects(
        self, db: Session, user: User, appointment_type: AppointmentType, appointment: Appointment
    ) -> PostCommitTasks:
        async def create_calendar_event() -> None:
            ref = await self.calendar_writer.create_event(user, appointment, appointment_type)
            if ref is None:
                return
            appointment.calendar_event_id = ref.event_id
            appointment.meeting_link = ref.meeting_link
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise

        def increment_usage() -> None:
            try:
                self.usage_limiter.increment(db, user)
            except SQLAlchemyError:
                db.rollback()
                raise

        return (
            PostCommitTasks(context=f"booking {appointment.id}")
            .add("usage_increment", increment_usage)
            .add("calendar_create", create_calendar_event)
            .add("cache_invalidation", lambda: self.cache.invalidate_user(user.id))
            .add("visitor_confirmation", lambda: self.notifications.send_booking_confirmation(
                user, appointment, appointment_type))
            .add("owner_notification", lambda: self.notifications.send_owner_notification(
                user, appointment, appointment_type))
        )

    async def commit_booking(self, db: Session, request: BookingRequest) -> Appointment:
        """
        Commit a booking if, and only if, every gate passes.

        Args:
            db: Database session
            request: Validated booking request

        Returns:
            The persisted appointment, including any calendar event id and
            meeting link captured by the post-commit phase

        Raises:
            NotFoundError / InactiveError: Unknown or disabled business or type
            UsageLimitExceededError: Business reached its monthly booking limit
            PaymentRequiredError / PaymentRejectedError / PaymentAlreadyUsedError: Payment gate
            UpstreamTimeoutError / UpstreamRejectedError: Payment provider failure
            SlotTakenError: The interval conflicts with an existing booking
        """
        user = AvailabilityService.resolve_user(db, widget_id=request.widget_id)
        appointment_type = AvailabilityService.get_appointment_type(db, user, request.appointment_type_id)

        usage = self.usage_limiter.check(db, user)
        if not usage.allowed:
            raise UsageLimitExceededError(
                f"Monthly booking limit reached ({int(usage.limit)} bookings per month)",
                details={"limit": int(usage.limit), "current": usage.current},
            )

        payment = await self._verify_payment(db, appointment_type, request.payment_intent_id)

        if request.start_time.tzinfo is None:
            raise ValidationFailedError("startTime must include a timezone offset")
        start = ensure_utc(request.start_time)
        end = start + timedelta(minutes=appointment_type.duration)

        appointment = self._insert_appointment(db, user, appointment_type, request, start, end, payment)
        logger.info(
            f"Booked appointment {appointment.id} for user {user.id} "
            f"({appointment_type.name}) at {start.isoformat()}"
        )

        outcomes = await self._side_effects(db, user, appointment_type, appointment).run()
        failed: List[str] = [outcome.stage for outcome in outcomes if not outcome.ok]
        if failed:
            logger.warning(f"Booking {appointment.id} committed with failed side effects: {', '.join(failed)}")
        return appointment
