"""
Appointment model representing committed bookings.

Appointments are created by the booking commit path and only ever move from
'confirmed' to 'cancelled'. They are never hard-deleted so the history
(including payment and refund references) stays auditable.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base, UTCDateTime


class Appointment(Base):
    """
    A visitor's booking of one appointment type at one absolute interval.

    Start and end are stored as UTC instants; ``timezone`` records the zone the
    visitor booked from, for display only.
    """

    __tablename__ = "appointments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    """Business that owns the calendar this appointment occupies."""

    appointment_type_id: Mapped[int] = mapped_column(ForeignKey("appointment_types.id"))
    """Type of the appointment. Its buffers apply when testing conflicts."""

    start_time: Mapped[datetime] = mapped_column(UTCDateTime())
    end_time: Mapped[datetime] = mapped_column(UTCDateTime())
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")

    status: Mapped[str] = mapped_column(String(16), default="confirmed")
    """Current status of the appointment. Valid values: 'confirmed', 'cancelled'."""

    # Visitor identity
    visitor_name: Mapped[str] = mapped_column(String(255))
    visitor_email: Mapped[str] = mapped_column(String(255))
    visitor_phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    form_responses: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Payment
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    """Payment that paid for this booking. Unique so a payment can back only one booking."""

    payment_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    """'paid' or 'deposit_paid' when a payment was verified."""

    amount_paid: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Amount received in minor units."""

    refund_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    refund_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    refund_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    """'refunded', or 'manual_review' when the provider refund failed."""

    cancellation_token: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    """Unguessable token that authorizes visitor-initiated cancellation."""

    # External calendar
    calendar_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    meeting_link: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Relationships
    user = relationship("User", back_populates="appointments")
    appointment_type = relationship("AppointmentType", back_populates="appointments")

    __table_args__ = (
        Index("idx_appointments_user_start", "user_id", "start_time"),
        # Storage-level guard: two confirmed bookings cannot share a start instant
        Index(
            "uq_appointments_user_start_confirmed",
            "user_id",
            "start_time",
            unique=True,
            sqlite_where=text("status = 'confirmed'"),
            postgresql_where=text("status = 'confirmed'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, user_id={self.user_id}, start={self.start_time}, status='{self.status}')>"
