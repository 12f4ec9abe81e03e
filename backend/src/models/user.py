"""
Business (tenant) model.

Each User is a business owner whose calendar visitors book into through an
embeddable widget. The owner's identity lives in the external identity
provider; this table keeps the scheduling-relevant profile, the subscription
state mirrored from the payment provider, and the monthly usage counter.
"""

from typing import Optional
from datetime import datetime
from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base, UTCDateTime


class User(Base):
    """Business owner and tenant boundary for all scheduling data."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Identity
    external_id: Mapped[str] = mapped_column(String(255), unique=True)
    """Identifier of the owner in the external identity provider."""

    email: Mapped[str] = mapped_column(String(255))
    business_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    widget_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    """Public identifier embedded in the booking widget; resolves to this business."""

    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    """IANA timezone in which availability rules are expressed."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    """False once the owner is deleted in the identity provider. Appointments are retained."""

    # Subscription (mirrored from payment provider webhooks)
    subscription_tier: Mapped[str] = mapped_column(String(32), default="free")
    subscription_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    billing_interval: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    current_period_end: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False)

    # Usage
    monthly_bookings: Mapped[int] = mapped_column(Integer, default=0)
    last_usage_reset: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Integrations
    gcal_credentials: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Encrypted Google Calendar OAuth credentials (see EncryptionService)."""

    stripe_connect_account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Connected payment account that receives booking payments."""

    # Metadata
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Relationships
    availability_rules = relationship("AvailabilityRule", back_populates="user", cascade="all, delete-orphan")
    date_overrides = relationship("DateOverride", back_populates="user", cascade="all, delete-orphan")
    appointment_types = relationship("AppointmentType", back_populates="user")
    appointments = relationship("Appointment", back_populates="user")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', widget_id='{self.widget_id}')>"
