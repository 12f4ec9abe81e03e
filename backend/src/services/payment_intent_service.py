"""
Payment intent creation for paid appointment types.

The visitor pays before booking; the resulting intent id is later presented to
the booking commit path, which checks the metadata stamped here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from core.constants import MIN_CHARGE_AMOUNT
from core.exceptions import PaymentsNotConfiguredError, ValidationFailedError
from models import AppointmentType, User
from services.availability_service import AvailabilityService
from services.payment_service import PaymentProvider

logger = logging.getLogger(__name__)


@dataclass
class PaymentIntentResult:
    client_secret: Optional[str]
    payment_intent_id: str
    amount: int
    currency: str
    is_deposit: bool
    deposit_percent: Optional[int]
    full_price: int
    business_name: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clientSecret": self.client_secret,
            "paymentIntentId": self.payment_intent_id,
            "amount": self.amount,
            "currency": self.currency,
            "isDeposit": self.is_deposit,
            "depositPercent": self.deposit_percent,
            "fullPrice": self.full_price,
            "businessName": self.business_name,
        }


def compute_charge_amount(price: int, deposit_percent: Optional[int]) -> int:
    """Full price, or the rounded deposit share, never below the provider minimum."""
    amount = price
    if deposit_percent:
        amount = round(price * deposit_percent / 100)
    return max(amount, MIN_CHARGE_AMOUNT)


def build_payment_metadata(
    user: User, appointment_type: AppointmentType, visitor_email: str, visitor_name: str
) -> Dict[str, str]:
    """Metadata the booking commit path verifies against the booked type."""
    return {
        "widgetId": user.widget_id,
        "appointmentTypeId": str(appointment_type.id),
        "appointmentTypeName": appointment_type.name,
        "userId": str(user.id),
        "connectedAccountId": user.stripe_connect_account_id or "",
        "visitorEmail": visitor_email,
        "visitorName": visitor_name,
        "fullPrice": str(appointment_type.price),
        "isDeposit": "true" if appointment_type.deposit_percent else "false",
        "depositPercent": str(appointment_type.deposit_percent) if appointment_type.deposit_percent else "",
        "refundPolicy": appointment_type.refund_policy,
        "type": "appointment_booking",
    }


class PaymentIntentService:
    def __init__(self, payment_provider: PaymentProvider) -> None:
        self.payment_provider = payment_provider

    async def create_payment_intent(
        self,
        db: Session,
        widget_id: str,
        appointment_type_id: int,
        visitor_email: str,
        visitor_name: str,
    ) -> PaymentIntentResult:
        """
        Create a payment intent for one booking of a paid appointment type.

        Funds are routed to the business's connected account.

        Raises:
            NotFoundError / InactiveError: Unknown or disabled business or type
            ValidationFailedError: The type does not require payment
            PaymentsNotConfiguredError: The business has no connected account
            UpstreamTimeoutError / UpstreamRejectedError: Provider failure
        """
        user = AvailabilityService.resolve_user(db, widget_id=widget_id)
        appointment_type = AvailabilityService.get_appointment_type(db, user, appointment_type_id)

        if not appointment_type.require_payment or not appointment_type.price:
            raise ValidationFailedError("This appointment type does not require payment")

        if not user.stripe_connect_account_id:
            logger.warning(f"User {user.id} has not set up payments; cannot create payment intent")
            raise PaymentsNotConfiguredError(
                "This business has not set up payment processing yet. Please contact them directly."
            )

        amount = compute_charge_amount(appointment_type.price, appointment_type.deposit_percent)
        intent = await self.payment_provider.create_payment_intent(
            amount=amount,
            currency=appointment_type.currency,
            metadata=build_payment_metadata(user, appointment_type, visitor_email, visitor_name),
            description=f"{appointment_type.name} booking with {user.business_name or 'Business'}",
            receipt_email=visitor_email,
            destination_account=user.stripe_connect_account_id,
        )
        logger.info(
            f"Created payment intent {intent.id} for appointment type {appointment_type.id} "
            f"({amount} {appointment_type.currency})"
        )

        return PaymentIntentResult(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            amount=amount,
            currency=appointment_type.currency,
            is_deposit=bool(appointment_type.deposit_percent),
            deposit_percent=appointment_type.deposit_percent,
            full_price=appointment_type.price,
            business_name=user.business_name,
        )
