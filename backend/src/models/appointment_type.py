"""
Appointment type model representing the services a business offers.

Appointment types define duration, buffer padding and payment terms. They are
read by value during a slot generation pass.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base, UTCDateTime


class AppointmentType(Base):
    """
    A bookable service offered by a business.

    Buffers pad the appointment on both sides for conflict testing only; they
    do not affect slot spacing. Prices are in the currency's minor unit.
    """

    __tablename__ = "appointment_types"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the appointment type."""

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    """Reference to the business that offers this appointment type."""

    name: Mapped[str] = mapped_column(String(255))
    """Human-readable name of the appointment type (e.g., 'Intro Call')."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    duration: Mapped[int] = mapped_column(Integer)
    """Length of the appointment in minutes. Also the slot step."""

    buffer_before: Mapped[int] = mapped_column(Integer, default=0)
    """Minutes the owner is busy before the appointment starts."""

    buffer_after: Mapped[int] = mapped_column(Integer, default=0)
    """Minutes the owner is busy after the appointment ends."""

    require_payment: Mapped[bool] = mapped_column(Boolean, default=False)
    price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Full price in minor units (e.g. cents)."""

    deposit_percent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """If set (1-99), only this percentage of the price is charged up front."""

    currency: Mapped[str] = mapped_column(String(3), default="usd")

    enable_google_meet: Mapped[bool] = mapped_column(Boolean, default=False)
    """Attach a video conference link to the calendar event on booking."""

    refund_policy: Mapped[str] = mapped_column(String(16), default="full")
    """Refund applied on cancellation: 'full', 'partial' or 'none'."""

    active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Relationships
    user = relationship("User", back_populates="appointment_types")
    appointments = relationship("Appointment", back_populates="appointment_type")

    def __repr__(self) -> str:
        return f"<AppointmentType(id={self.id}, name='{self.name}', duration={self.duration})>"
