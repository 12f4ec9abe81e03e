"""
Webhook idempotency ledger.

One row per (provider, event_id) ever received. ``processed`` flips to True
only after the handler succeeded, so a row with ``processed=False`` means the
event is in flight or failed and may be retried by the provider.
"""

from datetime import datetime
from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base, UTCDateTime


class WebhookEvent(Base):
    """Durable dedup record for an inbound webhook event."""

    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    provider: Mapped[str] = mapped_column(String(32))
    event_id: Mapped[str] = mapped_column(String(255))
    event_type: Mapped[str] = mapped_column(String(128))
    processed: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent(provider='{self.provider}', event_id='{self.event_id}', processed={self.processed})>"
