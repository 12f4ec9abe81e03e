"""
Payment provider integration.

``PaymentProvider`` is the capability the booking and cancellation paths use:
retrieve a payment intent for verification, create one for a booking, and
refund one. ``StripePaymentProvider`` implements it with the Stripe SDK. Every
provider call runs in a worker thread under a deadline; a call that does not
finish in time raises ``UpstreamTimeoutError`` and a provider-side error raises
``UpstreamRejectedError``, so callers can tell whether a retry is safe.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, TypeVar

import stripe

from core.config import PAYMENT_PROVIDER_TIMEOUT_SECONDS, STRIPE_SECRET_KEY
from core.exceptions import UpstreamRejectedError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PaymentIntentInfo:
    id: str
    status: str
    amount: int
    amount_received: int
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class RefundInfo:
    id: str
    amount: int
    currency: str
    status: str


class PaymentProvider(Protocol):
    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentInfo:
        ...

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        description: str,
        receipt_email: Optional[str] = None,
        destination_account: Optional[str] = None,
    ) -> PaymentIntentInfo:
        ...

    async def refund(
        self, payment_intent_id: str, amount: int, idempotency_key: Optional[str] = None
    ) -> RefundInfo:
        ...


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _as_dict(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return {}


def _to_payment_intent_info(intent: Any) -> PaymentIntentInfo:
    metadata = _as_dict(_field(intent, "metadata"))
    return PaymentIntentInfo(
        id=_field(intent, "id"),
        status=_field(intent, "status"),
        amount=_field(intent, "amount") or 0,
        amount_received=_field(intent, "amount_received") or 0,
        currency=_field(intent, "currency") or "",
        metadata={str(key): str(value) for key, value in metadata.items()},
        client_secret=_field(intent, "client_secret"),
    )


class StripePaymentProvider:
    """Stripe-backed payment provider."""

    def __init__(
        self,
        api_key: str = STRIPE_SECRET_KEY,
        timeout_seconds: float = PAYMENT_PROVIDER_TIMEOUT_SECONDS,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout_seconds

    async def _call(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if not self._api_key:
            raise UpstreamRejectedError("Payment provider is not configured")
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, api_key=self._api_key, **kwargs),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Stripe {operation} timed out after {self._timeout}s")
            raise UpstreamTimeoutError(f"Payment provider timed out during {operation}")
        except stripe.APIConnectionError as e:
            # Network failure: the request may or may not have reached Stripe
            logger.error(f"Stripe {operation} connection error: {e}")
            raise UpstreamTimeoutError(f"Payment provider unreachable during {operation}")
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {e}")
            raise UpstreamRejectedError(
                f"Payment provider rejected {operation}",
                details={"providerMessage": getattr(e, "user_message", None) or str(e)},
            )

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentInfo:
        intent = await self._call("payment intent retrieval", stripe.PaymentIntent.retrieve, payment_intent_id)
        return _to_payment_intent_info(intent)

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        description: str,
        receipt_email: Optional[str] = None,
        destination_account: Optional[str] = None,
    ) -> PaymentIntentInfo:
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata,
            "description": description,
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        if destination_account:
            params["transfer_data"] = {"destination": destination_account}
        intent = await self._call("payment intent creation", stripe.PaymentIntent.create, **params)
        return _to_payment_intent_info(intent)

    async def refund(
        self, payment_intent_id: str, amount: int, idempotency_key: Optional[str] = None
    ) -> RefundInfo:
        params: Dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "amount": amount,
            "reverse_transfer": True,
        }
        if idempotency_key:
            # Stripe replays the original refund for a repeated key instead of issuing another
            params["idempotency_key"] = idempotency_key
        refund = await self._call("refund", stripe.Refund.create, **params)
        return RefundInfo(
            id=_field(refund, "id"),
            amount=_field(refund, "amount") or amount,
            currency=_field(refund, "currency") or "",
            status=_field(refund, "status") or "",
        )
