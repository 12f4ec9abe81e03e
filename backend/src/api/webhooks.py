"""
Webhook endpoints for external service integrations.

``POST /webhooks/stripe`` receives payment provider subscription events and
``POST /webhooks/identity`` receives identity provider user events. The
idempotent webhook processor verifies each delivery's signature before
anything is recorded, then runs the provider's handler. A handler failure
answers 500 so the provider retries delivery.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from api.dependencies import get_subscription_handler, get_webhook_processor
from api.responses import WebhookAckResponse
from core.constants import WEBHOOK_PROVIDER_IDENTITY, WEBHOOK_PROVIDER_STRIPE
from core.database import get_db
from core.exceptions import NotFoundError
from services.identity_webhook_handlers import handle_identity_event
from services.subscription_webhook_handlers import SubscriptionEventHandler
from services.webhook_processor import WebhookProcessor

router = APIRouter()
logger = logging.getLogger(__name__)


def get_webhook_secrets(request: Request) -> Dict[str, str]:
    return request.app.state.webhook_secrets


@router.post(
    "/{provider}",
    response_model=WebhookAckResponse,
    summary="Provider webhook",
    responses={
        400: {"description": "Invalid signature or payload"},
        404: {"description": "Unknown provider"},
        500: {"description": "Handler failed; provider should retry"},
    },
)
async def receive_webhook(
    provider: str,
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
    subscription_handler: SubscriptionEventHandler = Depends(get_subscription_handler),
    secrets: Dict[str, str] = Depends(get_webhook_secrets),
    db: Session = Depends(get_db),
) -> WebhookAckResponse:
    """
    Verify, record and process one provider event.

    Already-processed events are acknowledged without running the handler again.
    """
    if provider == WEBHOOK_PROVIDER_STRIPE:
        handler = subscription_handler
    elif provider == WEBHOOK_PROVIDER_IDENTITY:
        handler = handle_identity_event
    else:
        raise NotFoundError(f"Unknown webhook provider: {provider}")

    body = await request.body()
    await processor.receive(db, provider, body, request.headers, secrets.get(provider, ""), handler)
    return WebhookAckResponse(received=True)
