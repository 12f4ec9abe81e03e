# pyright: reportMissingTypeStubs=false
"""
Booking Engine Backend API

A FastAPI application serving the public availability and booking endpoints
behind an embeddable scheduling widget.

Features:
- Slot availability with per-day caching and batched external busy lookups
- Conflict-checked booking commit with payment verification
- Token-based cancellation with policy refunds
- Idempotent payment and identity provider webhooks
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import availability, booking, webhooks
from core.config import (
    BUSY_FETCH_TIMEOUT_SECONDS,
    ENABLE_SCHEDULERS,
    IDENTITY_WEBHOOK_SECRET,
    LOG_LEVEL,
    STRIPE_WEBHOOK_SECRET,
)
from core.constants import (
    BUSY_CACHE_TTL_SECONDS,
    CORS_ORIGINS,
    DATES_CACHE_TTL_SECONDS,
    SLOT_CACHE_TTL_SECONDS,
    WEBHOOK_PROVIDER_IDENTITY,
    WEBHOOK_PROVIDER_STRIPE,
)
from core.exceptions import BookingEngineError, RateLimitedError
from services.availability_service import AvailabilityService
from services.booking_service import BookingService
from services.calendar_gateway import BusyIntervalProvider, CalendarEventWriter, GoogleCalendarGateway
from services.cancellation_service import CancellationService
from services.maintenance_scheduler import start_maintenance_scheduler, stop_maintenance_scheduler
from services.notification_service import EmailSender, LoggingEmailSender, NotificationService
from services.payment_intent_service import PaymentIntentService
from services.payment_service import PaymentProvider, StripePaymentProvider
from services.rate_limiter import RateLimiter
from services.slot_cache import SlotCache
from services.subscription_webhook_handlers import SubscriptionEventHandler
from services.usage_service import UsageLimiter
from services.webhook_processor import WebhookProcessor

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)


def configure_services(
    app: FastAPI,
    *,
    cache: Optional[SlotCache] = None,
    busy_provider: Optional[BusyIntervalProvider] = None,
    calendar_writer: Optional[CalendarEventWriter] = None,
    payment_provider: Optional[PaymentProvider] = None,
    email_sender: Optional[EmailSender] = None,
    rate_limiter: Optional[RateLimiter] = None,
    webhook_secrets: Optional[dict] = None,
) -> None:
    """
    Build the service graph once and attach it to ``app.state``.

    Any collaborator left as None gets its production implementation.
    """
    cache = cache or SlotCache(SLOT_CACHE_TTL_SECONDS, BUSY_CACHE_TTL_SECONDS, DATES_CACHE_TTL_SECONDS)
    gateway = GoogleCalendarGateway()
    busy_provider = busy_provider or gateway
    calendar_writer = calendar_writer or gateway
    payment_provider = payment_provider or StripePaymentProvider()
    notifications = NotificationService(email_sender or LoggingEmailSender())
    usage_limiter = UsageLimiter()

    app.state.cache = cache
    app.state.usage_limiter = usage_limiter
    app.state.rate_limiter = rate_limiter or RateLimiter()
    app.state.availability_service = AvailabilityService(cache, busy_provider, BUSY_FETCH_TIMEOUT_SECONDS)
    app.state.booking_service = BookingService(
        cache, payment_provider, calendar_writer, usage_limiter, notifications
    )
    app.state.cancellation_service = CancellationService(cache, payment_provider, calendar_writer, notifications)
    app.state.payment_intent_service = PaymentIntentService(payment_provider)
    app.state.webhook_processor = WebhookProcessor()
    app.state.subscription_handler = SubscriptionEventHandler(notifications)
    app.state.webhook_secrets = webhook_secrets if webhook_secrets is not None else {
        WEBHOOK_PROVIDER_STRIPE: STRIPE_WEBHOOK_SECRET,
        WEBHOOK_PROVIDER_IDENTITY: IDENTITY_WEBHOOK_SECRET,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("🚀 Starting Booking Engine API")

    if not hasattr(app.state, "booking_service"):
        configure_services(app)

    if ENABLE_SCHEDULERS:
        # Note: Database sessions are created fresh for each scheduler run
        try:
            await start_maintenance_scheduler(app.state.cache, app.state.usage_limiter, app.state.rate_limiter)
            logger.info("✅ Maintenance scheduler started")
        except Exception as e:
            logger.exception(f"❌ Failed to start maintenance scheduler: {e}")

    yield

    if ENABLE_SCHEDULERS:
        try:
            await stop_maintenance_scheduler()
            logger.info("🛑 Maintenance scheduler stopped")
        except Exception as e:
            logger.exception(f"❌ Error stopping maintenance scheduler: {e}")

    logger.info("🛑 Shutting down Booking Engine API")


# Create FastAPI application
app = FastAPI(
    title="Booking Engine Backend",
    description="Availability and booking conflict resolution for embeddable scheduling widgets",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan,
)

# CORS middleware: the widget calls the public endpoints from customer sites
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(
    availability.router,
    prefix="/availability",
    tags=["availability"],
    responses={
        400: {"description": "Invalid request"},
        404: {"description": "Resource not found"},
        429: {"description": "Too many requests"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    booking.router,
    tags=["booking"],
    responses={
        400: {"description": "Invalid request"},
        404: {"description": "Resource not found"},
        429: {"description": "Too many requests"},
        500: {"description": "Internal server error"},
        502: {"description": "Upstream provider rejected the request"},
        504: {"description": "Upstream provider timed out"},
    },
)
app.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["webhooks"],
)


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API information."""
    return {
        "message": "Booking Engine API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


# Global exception handlers
@app.exception_handler(BookingEngineError)
async def booking_engine_error_handler(request: Request, exc: BookingEngineError):
    """Render expected failures as ``{"error", "message", **details}``."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error} on {request.url.path}: {exc.message}", extra={"stage": exc.stage})
    else:
        logger.info(f"{exc.error} on {request.url.path}: {exc.message}")

    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["X-RateLimit-Remaining"] = "0"
        if "retryAfter" in exc.details:
            headers["Retry-After"] = str(exc.details["retryAfter"])
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Handle request validation failures."""
    logger.warning(f"Validation failed on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_failed",
            "message": "Invalid request data",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "internal", "message": "Internal server error"},
    )
