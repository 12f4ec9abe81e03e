"""
Shared request and response models for the public API.

JSON field names are camelCase (the widget's convention); Python attributes
stay snake_case through an alias generator.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AppointmentTypeSummary(CamelModel):
    """Appointment type as shown to visitors."""
    id: int
    name: str
    duration: int


class SlotResponse(CamelModel):
    start: str  # UTC instant, RFC 3339
    end: str
    start_local: str  # e.g. "9:00 AM" in the business timezone
    end_local: str
    available: bool


class DaySlotsResponse(CamelModel):
    date: str  # YYYY-MM-DD, business-local
    slots: List[SlotResponse]


class AvailabilityResponse(CamelModel):
    appointment_type: AppointmentTypeSummary
    timezone: str
    slots: List[DaySlotsResponse]
    cached: bool


class AvailableDatesResponse(CamelModel):
    appointment_type: AppointmentTypeSummary
    timezone: str
    dates: List[str]
    cached: bool


class PrewarmResponse(CamelModel):
    success: bool
    days_cached: int


class BookedAppointment(CamelModel):
    id: int
    appointment_type: AppointmentTypeSummary
    start_time: str
    end_time: str
    timezone: str
    visitor_name: str
    visitor_email: str
    cancellation_token: str
    meeting_link: Optional[str] = None
    payment_status: Optional[str] = None


class BookingResponse(CamelModel):
    success: bool = True
    appointment: BookedAppointment


class RefundSummary(CamelModel):
    refund_id: str
    amount: int
    currency: str


class CancellationResponse(CamelModel):
    success: bool
    message: str
    already_cancelled: bool = False
    refund: Optional[RefundSummary] = None


class PaymentIntentResponse(CamelModel):
    client_secret: Optional[str] = None
    payment_intent_id: str
    amount: int
    currency: str
    is_deposit: bool
    deposit_percent: Optional[int] = None
    full_price: int
    business_name: Optional[str] = None


class WebhookAckResponse(CamelModel):
    received: bool = True
