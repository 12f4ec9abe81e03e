"""
Public booking endpoints: book, cancel, and pay.

Visitors are anonymous; a booking is addressed by the business's widget id and
a cancellation by the appointment's cancellation token.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from api.dependencies import (
    get_booking_service,
    get_cancellation_service,
    get_payment_intent_service,
    rate_limit,
)
from api.responses import (
    AppointmentTypeSummary,
    BookedAppointment,
    BookingResponse,
    CancellationResponse,
    PaymentIntentResponse,
    RefundSummary,
)
from core.constants import MAX_NOTES_LENGTH, MAX_STRING_LENGTH
from core.database import get_db
from services.booking_service import BookingRequest, BookingService
from services.cancellation_service import CancellationService
from services.payment_intent_service import PaymentIntentService
from utils.datetime_utils import is_valid_timezone, parse_iso_instant, to_iso_utc

logger = logging.getLogger(__name__)

router = APIRouter()

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _validate_name(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Name is required")
    if len(v) > MAX_STRING_LENGTH:
        raise ValueError("Name is too long")
    return v


def _validate_email(v: str) -> str:
    v = v.strip()
    if not EMAIL_PATTERN.match(v) or len(v) > MAX_STRING_LENGTH:
        raise ValueError("Invalid email address")
    return v


class CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookRequest(CamelRequest):
    """Request model for booking an appointment."""
    widget_id: str
    appointment_type_id: int
    start_time: datetime
    visitor_name: str
    visitor_email: str
    visitor_phone: Optional[str] = None
    notes: Optional[str] = None
    timezone: str = "UTC"
    form_responses: Optional[Dict[str, Any]] = None
    payment_intent_id: Optional[str] = None

    @field_validator('start_time', mode='before')
    @classmethod
    def parse_start_time(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_iso_instant(v)
        return v

    @field_validator('start_time')
    @classmethod
    def require_offset(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("startTime must include a timezone offset")
        return v

    @field_validator('visitor_name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_name(v)

    @field_validator('visitor_email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _validate_email(v)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) > MAX_NOTES_LENGTH:
            raise ValueError(f"Notes are too long (max {MAX_NOTES_LENGTH} characters)")
        return v

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if not is_valid_timezone(v):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class CancelRequest(CamelRequest):
    """Request model for cancelling an appointment."""
    cancellation_token: str

    @field_validator('cancellation_token')
    @classmethod
    def validate_token(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("cancellationToken is required")
        return v


class PaymentIntentRequest(CamelRequest):
    """Request model for creating a payment intent."""
    widget_id: str
    appointment_type_id: int
    visitor_email: str
    visitor_name: str

    @field_validator('visitor_name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_name(v)

    @field_validator('visitor_email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _validate_email(v)


@router.post(
    "/book",
    response_model=BookingResponse,
    dependencies=[Depends(rate_limit("booking"))],
    summary="Book an appointment",
    responses={
        402: {"description": "Payment required or rejected"},
        409: {"description": "Slot taken or payment already used"},
        429: {"description": "Rate or plan limit reached"},
    },
)
async def book_appointment(
    request: BookRequest,
    booking_service: BookingService = Depends(get_booking_service),
    db: Session = Depends(get_db),
) -> BookingResponse:
    """
    Commit a booking.

    The slot is re-checked against existing bookings at commit time; a
    conflict returns 409 and the client should refresh availability.
    """
    appointment = await booking_service.commit_booking(db, BookingRequest(
        widget_id=request.widget_id,
        appointment_type_id=request.appointment_type_id,
        start_time=request.start_time,
        visitor_name=request.visitor_name,
        visitor_email=request.visitor_email,
        visitor_phone=request.visitor_phone,
        notes=request.notes,
        timezone=request.timezone,
        form_responses=request.form_responses,
        payment_intent_id=request.payment_intent_id,
    ))
    appointment_type = appointment.appointment_type
    return BookingResponse(appointment=BookedAppointment(
        id=appointment.id,
        appointment_type=AppointmentTypeSummary(
            id=appointment_type.id,
            name=appointment_type.name,
            duration=appointment_type.duration,
        ),
        start_time=to_iso_utc(appointment.start_time),
        end_time=to_iso_utc(appointment.end_time),
        timezone=appointment.timezone,
        visitor_name=appointment.visitor_name,
        visitor_email=appointment.visitor_email,
        cancellation_token=appointment.cancellation_token,
        meeting_link=appointment.meeting_link,
        payment_status=appointment.payment_status,
    ))


@router.post(
    "/cancel",
    response_model=CancellationResponse,
    dependencies=[Depends(rate_limit("cancellation"))],
    summary="Cancel an appointment",
)
async def cancel_appointment(
    request: CancelRequest,
    cancellation_service: CancellationService = Depends(get_cancellation_service),
    db: Session = Depends(get_db),
) -> CancellationResponse:
    """Cancel by token. Cancelling twice reports ``alreadyCancelled`` rather than failing."""
    result = await cancellation_service.cancel_booking(db, request.cancellation_token)
    refund = None
    if result.refund is not None:
        refund = RefundSummary(
            refund_id=result.refund.id,
            amount=result.refund.amount,
            currency=result.refund.currency,
        )
    return CancellationResponse(
        success=True,
        message=result.message,
        already_cancelled=result.already_cancelled,
        refund=refund,
    )


@router.post(
    "/payment-intent",
    response_model=PaymentIntentResponse,
    dependencies=[Depends(rate_limit("payment_intent"))],
    summary="Create a payment intent",
)
async def create_payment_intent(
    request: PaymentIntentRequest,
    payment_intent_service: PaymentIntentService = Depends(get_payment_intent_service),
    db: Session = Depends(get_db),
) -> PaymentIntentResponse:
    """Create a payment intent for a paid appointment type."""
    result = await payment_intent_service.create_payment_intent(
        db,
        widget_id=request.widget_id,
        appointment_type_id=request.appointment_type_id,
        visitor_email=request.visitor_email,
        visitor_name=request.visitor_name,
    )
    return PaymentIntentResponse.model_validate(result.to_dict())
