"""
Idempotent webhook processing.

Every inbound event is recorded in the ``webhook_events`` ledger keyed by
(provider, event id). The handler runs at most once to completion per key: a
processed event is acknowledged without re-running it, and a failed handler
leaves the row unprocessed so the provider's retry runs it again.

Signature verification happens before the ledger is touched. Two schemes are
supported: the payment provider's ``Stripe-Signature`` header and Svix-style
``svix-id`` / ``svix-timestamp`` / ``svix-signature`` headers used by the
identity provider.
"""

import base64
import hashlib
import hmac
import inspect
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.constants import (
    WEBHOOK_PROVIDER_IDENTITY,
    WEBHOOK_PROVIDER_STRIPE,
    WEBHOOK_SIGNATURE_TOLERANCE_SECONDS,
)
from core.exceptions import InternalError, InvalidSignatureError, NotFoundError, ValidationFailedError
from models import WebhookEvent

logger = logging.getLogger(__name__)

WebhookHandler = Callable[[Session, Dict[str, Any]], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class WebhookResult:
    provider: str
    event_id: str
    event_type: str
    duplicate: bool = False


def _parse_json(payload: bytes) -> Dict[str, Any]:
    try:
        event = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationFailedError("Webhook body is not valid JSON")
    if not isinstance(event, dict):
        raise ValidationFailedError("Webhook body must be a JSON object")
    return event


def verify_stripe_event(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance: int = WEBHOOK_SIGNATURE_TOLERANCE_SECONDS,
) -> Dict[str, Any]:
    """
    Verify a ``Stripe-Signature`` header and return the decoded event.

    Raises:
        InvalidSignatureError: Missing header, missing secret or bad signature
    """
    if not signature_header:
        raise InvalidSignatureError("Missing Stripe-Signature header")
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not set; rejecting webhook")
        raise InvalidSignatureError("Webhook secret not configured")
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), signature_header, secret, tolerance)
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
        logger.warning(f"Stripe webhook signature verification failed: {e}")
        raise InvalidSignatureError()
    return _parse_json(payload)


def verify_svix_event(
    payload: bytes,
    message_id: Optional[str],
    timestamp: Optional[str],
    signature_header: Optional[str],
    secret: str,
    tolerance: int = WEBHOOK_SIGNATURE_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Verify Svix-style signature headers and return the decoded event.

    The signed content is ``{id}.{timestamp}.{body}``, HMAC-SHA256 with the
    base64-decoded secret (``whsec_`` prefix stripped). The header may carry
    several space-separated ``v1,<base64>`` signatures; any match is accepted.

    Raises:
        InvalidSignatureError: Missing headers or secret, stale timestamp, or no matching signature
    """
    if not message_id or not timestamp or not signature_header:
        raise InvalidSignatureError("Missing Svix headers")
    if not secret:
        logger.error("IDENTITY_WEBHOOK_SECRET is not set; rejecting webhook")
        raise InvalidSignatureError("Webhook secret not configured")

    try:
        sent_at = int(timestamp)
    except ValueError:
        raise InvalidSignatureError("Invalid webhook timestamp")
    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance:
        raise InvalidSignatureError("Webhook timestamp outside tolerance")

    try:
        key = base64.b64decode(secret[len("whsec_"):] if secret.startswith("whsec_") else secret)
        signed_content = f"{message_id}.{timestamp}.".encode("utf-8") + payload
    except ValueError:
        logger.error("IDENTITY_WEBHOOK_SECRET is not valid base64")
        raise InvalidSignatureError("Webhook secret misconfigured")
    expected = base64.b64encode(hmac.new(key, signed_content, hashlib.sha256).digest()).decode("utf-8")

    for versioned in signature_header.split():
        version, _, signature = versioned.partition(",")
        if version == "v1" and hmac.compare_digest(signature, expected):
            return _parse_json(payload)

    logger.warning(f"Svix webhook signature verification failed for message {message_id}")
    raise InvalidSignatureError()



def verify_event(
    provider: str,
    payload: bytes,
    headers: Mapping[str, str],
    secret: str,
) -> Tuple[str, Dict[str, Any]]:
    """
    Verify a raw delivery with the scheme ``provider`` uses.

    Returns the ledger event id and the decoded event. Stripe events carry
    their own id; for the identity provider the ``svix-id`` message id is used
    because it is stable across redeliveries of the same event.

    Raises:
        NotFoundError: Unknown provider
        InvalidSignatureError: Signature missing or wrong
        ValidationFailedError: Signed body lacks an id or type
    """
    if provider == WEBHOOK_PROVIDER_STRIPE:
        event = verify_stripe_event(payload, headers.get("stripe-signature"), secret)
        event_id = event.get("id")
    elif provider == WEBHOOK_PROVIDER_IDENTITY:
        message_id = headers.get("svix-id")
        event = verify_svix_event(
            payload,
            message_id,
            headers.get("svix-timestamp"),
            headers.get("svix-signature"),
            secret,
        )
        event_id = message_id
    else:
        raise NotFoundError(f"Unknown webhook provider: {provider}")

    if not event_id or not event.get("type"):
        raise ValidationFailedError("Webhook event is missing its id or type")
    return event_id, event


class WebhookProcessor:
    """Runs webhook handlers exactly once per (provider, event id)."""

    @staticmethod
    def _find(db: Session, provider: str, event_id: str) -> Optional[WebhookEvent]:
        return db.query(WebhookEvent).filter(
            WebhookEvent.provider == provider,
            WebhookEvent.event_id == event_id,
        ).first()

    async def process(
        self,
        db: Session,
        provider: str,
        event_id: str,
        event_type: str,
        payload: Dict[str, Any],
        handler: WebhookHandler,
    ) -> WebhookResult:
        """
        Record the event, run ``handler`` and mark the event processed.

        The handler's database changes and the ``processed`` flag are committed
        together. If the handler raises, everything it did is rolled back, the
        ledger row stays unprocessed and the exception propagates so the
        provider retries.

        ``payload`` must already be verified; ``receive`` is the entry point
        for raw deliveries.
        """
        ledger = self._find(db, provider, event_id)
        if ledger is not None and ledger.processed:
            logger.info(f"[{provider}] Event {event_id} already processed")
            return WebhookResult(provider, event_id, event_type, duplicate=True)

        if ledger is None:
            try:
                ledger = WebhookEvent(provider=provider, event_id=event_id, event_type=event_type, processed=False)
                db.add(ledger)
                db.commit()
            except IntegrityError:
                # A concurrent delivery of the same event inserted first
                db.rollback()
                ledger = self._find(db, provider, event_id)
                if ledger is None:
                    raise
                if ledger.processed:
                    return WebhookResult(provider, event_id, event_type, duplicate=True)

        logger.info(f"[{provider}] Processing event {event_id} ({event_type})")
        try:
            result = handler(db, payload)
            if inspect.isawaitable(result):
                await result
            ledger.processed = True
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(f"[{provider}] Handler failed for event {event_id} ({event_type}); left unprocessed")
            raise

        return WebhookResult(provider, event_id, event_type)

    async def receive(
        self,
        db: Session,
        provider: str,
        payload: bytes,
        headers: Mapping[str, str],
        secret: str,
        handler: WebhookHandler,
    ) -> WebhookResult:
        """
        Verify a raw delivery, then process it.

        A delivery that fails verification raises before the ledger is read
        or written. A failing handler is reported as ``InternalError`` so the
        provider retries.
        """
        event_id, event = verify_event(provider, payload, headers, secret)
        try:
            return await self.process(db, provider, event_id, event["type"], event, handler)
        except Exception as e:
            # Already logged by process
            raise InternalError("Webhook handler failed", stage="webhook_handler") from e
