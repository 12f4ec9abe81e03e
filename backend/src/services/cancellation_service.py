"""
Visitor-initiated cancellation with policy-driven refunds.

A cancellation is authorized by the appointment's unguessable token alone.
Refund failures never block the cancellation; the appointment is flagged for
manual reconciliation instead.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.constants import (
    APPOINTMENT_STATUS_CANCELLED,
    APPOINTMENT_STATUS_CONFIRMED,
    PARTIAL_REFUND_PERCENT,
    PAYMENT_STATUS_DEPOSIT_PAID,
    PAYMENT_STATUS_PAID,
    REFUND_STATUS_MANUAL_REVIEW,
    REFUND_STATUS_REFUNDED,
)
from core.exceptions import BookingEngineError, InternalError, NotFoundError, ValidationFailedError
from models import Appointment, AppointmentType, User
from services.calendar_gateway import CalendarEventWriter
from services.notification_service import NotificationService
from services.payment_service import PaymentProvider, RefundInfo
from services.post_commit import PostCommitTasks
from services.slot_cache import SlotCache
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class CancellationResult:
    appointment: Appointment
    already_cancelled: bool = False
    refund: Optional[RefundInfo] = None

    @property
    def message(self) -> str:
        if self.already_cancelled:
            return "Appointment was already cancelled"
        return "Appointment cancelled successfully"


def compute_refund_amount(amount_paid: Optional[int], refund_policy: Optional[str]) -> int:
    """
    Refund owed under the appointment type's policy.

    ``full`` refunds everything paid, ``partial`` a fixed percentage and
    ``none`` (or an unknown policy) nothing.
    """
    if not amount_paid:
        return 0
    if refund_policy == "full":
        return amount_paid
    if refund_policy == "partial":
        return round(amount_paid * PARTIAL_REFUND_PERCENT / 100)
    return 0


class CancellationService:
    """Cancels appointments by token and dispatches refunds and follow-ups."""

    def __init__(
        self,
        cache: SlotCache,
        payment_provider: PaymentProvider,
        calendar_writer: CalendarEventWriter,
        notifications: NotificationService,
    ) -> None:
        self.cache = cache
        self.payment_provider = payment_provider
        self.calendar_writer = calendar_writer
        self.notifications = notifications

    async def _refund(self, appointment: Appointment, appointment_type: AppointmentType) -> Optional[RefundInfo]:
        """Attempt the policy refund; on failure flag the appointment for manual review."""
        if not appointment.payment_intent_id or appointment.payment_status not in (
            PAYMENT_STATUS_PAID, PAYMENT_STATUS_DEPOSIT_PAID
        ):
            return None

        amount = compute_refund_amount(appointment.amount_paid, appointment_type.refund_policy)
        if amount <= 0:
            logger.info(
                f"No refund owed for appointment {appointment.id} "
                f"(policy {appointment_type.refund_policy!r})"
            )
            return None

        try:
            refund = await self.payment_provider.refund(
                appointment.payment_intent_id, amount, idempotency_key=f"refund-{appointment.id}"
            )
        except BookingEngineError as e:
            logger.error(
                f"[refund] Refund of {amount} for appointment {appointment.id} failed: {e.message}; "
                f"flagged for manual review",
                extra={"stage": "refund"},
            )
            appointment.refund_status = REFUND_STATUS_MANUAL_REVIEW
            return None

        appointment.refund_id = refund.id
        appointment.refund_amount = refund.amount
        appointment.refund_status = REFUND_STATUS_REFUNDED
        logger.info(f"Refunded {refund.amount} for appointment {appointment.id} ({refund.id})")
        return refund

    async def cancel_booking(self, db: Session, cancellation_token: str) -> CancellationResult:
        """
        Cancel the appointment identified by ``cancellation_token``.

        The status flip is a conditional update committed before any refund is
        attempted, so of several concurrent submissions of the same token only
        one claims the appointment and refunds it. The others, like any
        re-submission after the fact, report ``already_cancelled`` without
        touching anything.

        Raises:
            ValidationFailedError: Empty token
            NotFoundError: No appointment carries the token
            InternalError: The cancellation could not be saved
        """
        if not cancellation_token:
            raise ValidationFailedError("cancellationToken is required")

        appointment = db.query(Appointment).filter(
            Appointment.cancellation_token == cancellation_token
        ).first()
        if appointment is None:
            raise NotFoundError("Appointment not found")
        if appointment.status == APPOINTMENT_STATUS_CANCELLED:
            logger.info(f"Appointment {appointment.id} already cancelled")
            return CancellationResult(appointment, already_cancelled=True)

        try:
            claimed = db.execute(
                update(Appointment)
                .where(
                    Appointment.id == appointment.id,
                    Appointment.status == APPOINTMENT_STATUS_CONFIRMED,
                )
                .values(status=APPOINTMENT_STATUS_CANCELLED, cancelled_at=utc_now())
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(f"Failed to cancel appointment {appointment.id}: {e}")
            raise InternalError("Failed to cancel appointment")
        db.refresh(appointment)
        if not claimed:
            logger.info(f"Appointment {appointment.id} was cancelled by a concurrent request")
            return CancellationResult(appointment, already_cancelled=True)

        appointment_type: AppointmentType = appointment.appointment_type
        user: User = appointment.user
        logger.info(f"Cancelled appointment {appointment.id} for user {user.id}")

        refund = await self._refund(appointment, appointment_type)
        if appointment.refund_status is not None:
            try:
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.exception(
                    f"[refund] Failed to record refund outcome for appointment {appointment.id} "
                    f"(refund {refund.id if refund else 'none'}): {e}",
                    extra={"stage": "refund"},
                )

        tasks = PostCommitTasks(context=f"cancellation {appointment.id}")
        if appointment.calendar_event_id:
            event_id = appointment.calendar_event_id
            tasks.add("calendar_delete", lambda: self.calendar_writer.delete_event(user, event_id))
        tasks.add("cache_invalidation", lambda: self.cache.invalidate_user(user.id))
        tasks.add("cancellation_confirmation", lambda: self.notifications.send_cancellation_confirmation(
            user, appointment, appointment_type, refund.amount if refund else None))
        await tasks.run()

        return CancellationResult(appointment, refund=refund)
