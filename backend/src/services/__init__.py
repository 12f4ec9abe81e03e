"""
Services package for the booking engine's business logic.

Services are constructed once at startup (see ``main.py``) with their
collaborators injected, and shared by the API routers.
"""

from .availability_service import AvailabilityService
from .booking_service import BookingRequest, BookingService
from .cancellation_service import CancellationService
from .payment_intent_service import PaymentIntentService
from .slot_cache import SlotCache
from .usage_service import UsageLimiter
from .webhook_processor import WebhookProcessor

__all__ = [
    "AvailabilityService",
    "BookingRequest",
    "BookingService",
    "CancellationService",
    "PaymentIntentService",
    "SlotCache",
    "UsageLimiter",
    "WebhookProcessor",
]
