"""
Weekly recurring availability model.

Rules are wall-clock windows ("HH:MM") expressed in the business's own
timezone. The engine only reads them.
"""

from datetime import datetime
from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base, UTCDateTime


class AvailabilityRule(Base):
    """
    Recurring availability for one day of the week.

    One rule per (user, day_of_week) is expected. Days are numbered
    0=Sunday through 6=Saturday, as the dashboard stores them.
    """

    __tablename__ = "availability_rules"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    """Reference to the business this rule belongs to."""

    day_of_week: Mapped[int] = mapped_column(Integer)
    """Day of week (0=Sunday, 6=Saturday)."""

    start_time: Mapped[str] = mapped_column(String(5))
    """Window start as wall-clock "HH:MM" in the business timezone."""

    end_time: Mapped[str] = mapped_column(String(5))
    """Window end as wall-clock "HH:MM" in the business timezone."""

    is_available: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    user = relationship("User", back_populates="availability_rules")

    __table_args__ = (
        UniqueConstraint("user_id", "day_of_week", name="uq_availability_rule_user_day"),
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_availability_rule_day_of_week"),
    )

    def __repr__(self) -> str:
        return f"<AvailabilityRule(user_id={self.user_id}, day={self.day_of_week}, {self.start_time}-{self.end_time})>"
