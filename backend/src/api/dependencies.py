"""
FastAPI dependencies shared by the routers.

Services are built once in the application lifespan and stored on
``app.state``; these accessors hand them to the endpoints so tests can swap
collaborators by replacing the state or overriding the dependency.
"""

import logging
from typing import Callable

from fastapi import Request, Response

from core.exceptions import RateLimitedError
from services.availability_service import AvailabilityService
from services.booking_service import BookingService
from services.cancellation_service import CancellationService
from services.payment_intent_service import PaymentIntentService
from services.rate_limiter import RateLimiter
from services.subscription_webhook_handlers import SubscriptionEventHandler
from services.webhook_processor import WebhookProcessor
from utils.request_utils import get_client_ip

logger = logging.getLogger(__name__)


def get_availability_service(request: Request) -> AvailabilityService:
    return request.app.state.availability_service


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service


def get_cancellation_service(request: Request) -> CancellationService:
    return request.app.state.cancellation_service


def get_payment_intent_service(request: Request) -> PaymentIntentService:
    return request.app.state.payment_intent_service


def get_webhook_processor(request: Request) -> WebhookProcessor:
    return request.app.state.webhook_processor


def get_subscription_handler(request: Request) -> SubscriptionEventHandler:
    return request.app.state.subscription_handler


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def rate_limit(bucket: str) -> Callable[[Request, Response], None]:
    """
    Build a dependency that charges one request against ``bucket`` for the caller's IP.

    Raises:
        RateLimitedError: When the caller has spent the bucket's budget
    """
    def dependency(request: Request, response: Response) -> None:
        client_ip = get_client_ip(request)
        decision = get_rate_limiter(request).check(bucket, client_ip)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {client_ip} on {bucket}")
            details = {}
            if decision.retry_after is not None:
                details["retryAfter"] = int(decision.retry_after) + 1
            raise RateLimitedError(details=details)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)

    return dependency
