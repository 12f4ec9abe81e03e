"""Per-date exceptions to the weekly availability rules."""

from datetime import date as date_type, datetime
from typing import Optional
from sqlalchemy import Boolean, Date, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base, UTCDateTime


class DateOverride(Base):
    """
    Overrides the recurring rule for a single calendar date.

    ``is_available=False`` closes the whole day. When available, the
    start/end wall-clock times replace the recurring window; an available
    override without times yields no slots.
    """

    __tablename__ = "date_overrides"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    date: Mapped[date_type] = mapped_column(Date)
    """Business-local calendar date being overridden."""

    is_available: Mapped[bool] = mapped_column(Boolean, default=False)
    start_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    end_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    user = relationship("User", back_populates="date_overrides")

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_date_override_user_date"),
    )
