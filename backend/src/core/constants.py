"""Application constants and configuration values."""

import math

from core.config import FRONTEND_URL

# Database field lengths
MAX_STRING_LENGTH = 255
MAX_NOTES_LENGTH = 2000

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# CORS origins: the booking widget is embedded on customer sites, so the
# public endpoints are called cross-origin from the widget host.
_CORS_ORIGINS_RAW = [
    "http://localhost:3000",
    FRONTEND_URL,
]
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Slot cache
SLOT_CACHE_TTL_SECONDS = 60 * 60  # computed per-day slot arrays
BUSY_CACHE_TTL_SECONDS = 15 * 60  # raw external busy intervals
DATES_CACHE_TTL_SECONDS = 60 * 60  # available-date lists
CACHE_CLEANUP_INTERVAL_MINUTES = 10

# Availability read path
DEFAULT_AVAILABILITY_DAYS = 7  # when endDate is omitted
DEFAULT_AVAILABLE_DATES_DAYS_AHEAD = 14
MAX_AVAILABILITY_RANGE_DAYS = 31
MAX_PREWARM_DAYS = 14

# Rate limit budgets per client identity: (max requests, window seconds)
RATE_LIMITS = {
    "booking": (10, 3600),
    "payment_intent": (10, 3600),
    "availability": (300, 3600),
    "cancellation": (5, 3600),  # tight, to resist token guessing
}

# Booking
CANCELLATION_TOKEN_BYTES = 64  # 128 hex characters
APPOINTMENT_STATUS_CONFIRMED = "confirmed"
APPOINTMENT_STATUS_CANCELLED = "cancelled"

# Payments (amounts are in the currency's minor unit)
MIN_CHARGE_AMOUNT = 50
PARTIAL_REFUND_PERCENT = 50
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_DEPOSIT_PAID = "deposit_paid"
REFUND_STATUS_REFUNDED = "refunded"
REFUND_STATUS_MANUAL_REVIEW = "manual_review"

# Webhooks
WEBHOOK_PROVIDER_STRIPE = "stripe"
WEBHOOK_PROVIDER_IDENTITY = "identity"
WEBHOOK_SIGNATURE_TOLERANCE_SECONDS = 300

# Feature limits by subscription tier. Only the booking counter is enforced
# by the scheduling core; the remaining keys are consulted by the dashboard.
TIER_LIMITS = {
    "free": {
        "appointment_types": 1,
        "monthly_bookings": 25,
        "has_booking": True,
    },
    "booking": {
        "appointment_types": math.inf,
        "monthly_bookings": math.inf,
        "has_booking": True,
    },
    "chatbot": {
        "appointment_types": 0,
        "monthly_bookings": 0,
        "has_booking": False,
    },
    "bundle": {
        "appointment_types": math.inf,
        "monthly_bookings": math.inf,
        "has_booking": True,
    },
}
DEFAULT_TIER = "free"
USAGE_RESET_HOUR_UTC = 0
