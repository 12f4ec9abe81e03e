"""
Tests for payment intent creation and the Stripe-backed payment provider.
"""

import time
from unittest.mock import patch

import pytest
import stripe

from conftest import create_appointment_type, create_user
from core.exceptions import (
    InactiveError,
    PaymentsNotConfiguredError,
    UpstreamRejectedError,
    UpstreamTimeoutError,
    ValidationFailedError,
)
from services.payment_intent_service import (
    PaymentIntentService,
    build_payment_metadata,
    compute_charge_amount,
)
from services.payment_service import StripePaymentProvider


@pytest.fixture
def connected_user(db_session):
    return create_user(db_session, stripe_connect_account_id="acct_123")


@pytest.fixture
def payment_intent_service(payment_provider):
    return PaymentIntentService(payment_provider)


class TestChargeAmount:
    """Test charge amount rules."""

    def test_full_price(self):
        """Test the full price is charged without a deposit."""
        assert compute_charge_amount(10000, None) == 10000

    def test_deposit(self):
        """Test the deposit share is charged and rounded."""
        assert compute_charge_amount(10000, 25) == 2500
        assert compute_charge_amount(999, 33) == 330

    def test_minimum_charge(self):
        """Test tiny amounts are raised to the provider minimum."""
        assert compute_charge_amount(100, 10) == 50
        assert compute_charge_amount(30, None) == 50


class TestCreatePaymentIntent:
    """Test payment intent creation for paid types."""

    @pytest.mark.asyncio
    async def test_creates_intent_with_metadata(self, payment_intent_service, db_session, connected_user, payment_provider):
        """Test the intent carries the metadata the booking path verifies."""
        paid = create_appointment_type(
            db_session, connected_user, name="Strategy", require_payment=True, price=20000, refund_policy="partial"
        )

        result = await payment_intent_service.create_payment_intent(
            db_session, connected_user.widget_id, paid.id, "jane@example.com", "Jane Visitor"
        )

        assert result.amount == 20000
        assert result.is_deposit is False
        assert result.client_secret == f"{result.payment_intent_id}_secret"

        created = payment_provider.created[0]
        assert created["destination_account"] == "acct_123"
        assert created["receipt_email"] == "jane@example.com"
        assert created["description"] == "Strategy booking with Acme Studio"
        metadata = created["metadata"]
        assert metadata["appointmentTypeId"] == str(paid.id)
        assert metadata["isDeposit"] == "false"
        assert metadata["refundPolicy"] == "partial"
        assert metadata["widgetId"] == connected_user.widget_id
        assert metadata["type"] == "appointment_booking"

    @pytest.mark.asyncio
    async def test_deposit_intent(self, payment_intent_service, db_session, connected_user, payment_provider):
        """Test deposit types charge the deposit share."""
        deposit = create_appointment_type(
            db_session, connected_user, require_payment=True, price=20000, deposit_percent=20
        )

        result = await payment_intent_service.create_payment_intent(
            db_session, connected_user.widget_id, deposit.id, "jane@example.com", "Jane Visitor"
        )

        assert result.amount == 4000
        assert result.is_deposit is True
        assert result.full_price == 20000
        assert payment_provider.created[0]["metadata"]["depositPercent"] == "20"
        assert result.to_dict()["isDeposit"] is True

    @pytest.mark.asyncio
    async def test_free_type_rejected(self, payment_intent_service, db_session, connected_user):
        """Test a type that does not require payment is rejected."""
        free = create_appointment_type(db_session, connected_user)
        with pytest.raises(ValidationFailedError):
            await payment_intent_service.create_payment_intent(
                db_session, connected_user.widget_id, free.id, "jane@example.com", "Jane"
            )

    @pytest.mark.asyncio
    async def test_requires_connected_account(self, payment_intent_service, db_session, user, paid_appointment_type):
        """Test a business without a connected account cannot take payments."""
        with pytest.raises(PaymentsNotConfiguredError):
            await payment_intent_service.create_payment_intent(
                db_session, user.widget_id, paid_appointment_type.id, "jane@example.com", "Jane"
            )

    @pytest.mark.asyncio
    async def test_inactive_type(self, payment_intent_service, db_session, connected_user):
        """Test a disabled type cannot be paid for."""
        disabled = create_appointment_type(db_session, connected_user, require_payment=True, price=1000, active=False)
        with pytest.raises(InactiveError):
            await payment_intent_service.create_payment_intent(
                db_session, connected_user.widget_id, disabled.id, "jane@example.com", "Jane"
            )

    def test_metadata_without_deposit(self, db_session, connected_user):
        """Test deposit fields are empty strings when no deposit applies."""
        paid = create_appointment_type(db_session, connected_user, require_payment=True, price=5000)
        metadata = build_payment_metadata(connected_user, paid, "a@b.co", "A")
        assert metadata["depositPercent"] == ""
        assert metadata["fullPrice"] == "5000"
        assert metadata["connectedAccountId"] == "acct_123"


class TestStripePaymentProvider:
    """Test the Stripe SDK adapter and its error mapping."""

    @pytest.mark.asyncio
    async def test_retrieve_maps_intent(self):
        """Test a retrieved intent is mapped to PaymentIntentInfo."""
        provider = StripePaymentProvider(api_key="sk_test_123", timeout_seconds=5)
        intent = {
            "id": "pi_1",
            "status": "succeeded",
            "amount": 5000,
            "amount_received": 5000,
            "currency": "usd",
            "metadata": {"appointmentTypeId": "7", "isDeposit": "false"},
            "client_secret": "pi_1_secret",
        }
        with patch("services.payment_service.stripe.PaymentIntent.retrieve", return_value=intent) as retrieve:
            info = await provider.retrieve_payment_intent("pi_1")

        retrieve.assert_called_once_with("pi_1", api_key="sk_test_123")
        assert info.status == "succeeded"
        assert info.amount_received == 5000
        assert info.metadata["appointmentTypeId"] == "7"

    @pytest.mark.asyncio
    async def test_create_routes_funds_to_connected_account(self):
        """Test destination and receipt email are passed to Stripe."""
        provider = StripePaymentProvider(api_key="sk_test_123", timeout_seconds=5)
        with patch(
            "services.payment_service.stripe.PaymentIntent.create",
            return_value={"id": "pi_2", "status": "requires_payment_method", "amount": 1000, "currency": "usd"},
        ) as create:
            info = await provider.create_payment_intent(
                1000, "usd", {"k": "v"}, "desc", receipt_email="a@b.co", destination_account="acct_9"
            )

        kwargs = create.call_args.kwargs
        assert kwargs["transfer_data"] == {"destination": "acct_9"}
        assert kwargs["receipt_email"] == "a@b.co"
        assert kwargs["automatic_payment_methods"] == {"enabled": True}
        assert info.id == "pi_2"

    @pytest.mark.asyncio
    async def test_refund_reverses_transfer(self):
        """Test refunds pull funds back from the connected account and carry the idempotency key."""
        provider = StripePaymentProvider(api_key="sk_test_123", timeout_seconds=5)
        with patch(
            "services.payment_service.stripe.Refund.create",
            return_value={"id": "re_1", "amount": 500, "currency": "usd", "status": "succeeded"},
        ) as create:
            refund = await provider.refund("pi_1", 500, idempotency_key="refund-7")

        assert create.call_args.kwargs["reverse_transfer"] is True
        assert create.call_args.kwargs["idempotency_key"] == "refund-7"
        assert refund.id == "re_1"
        assert refund.amount == 500

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test a slow provider call raises UpstreamTimeoutError."""
        provider = StripePaymentProvider(api_key="sk_test_123", timeout_seconds=0.01)

        def slow(*args, **kwargs):
            time.sleep(0.2)
            return {}

        with patch("services.payment_service.stripe.PaymentIntent.retrieve", side_effect=slow):
            with pytest.raises(UpstreamTimeoutError):
                await provider.retrieve_payment_intent("pi_1")

    @pytest.mark.asyncio
    async def test_connection_error_is_timeout(self):
        """Test network failures map to UpstreamTimeoutError."""
        provider = StripePaymentProvider(api_key="sk_test_123", timeout_seconds=5)
        with patch(
            "services.payment_service.stripe.PaymentIntent.retrieve",
            side_effect=stripe.APIConnectionError("network down"),
        ):
            with pytest.raises(UpstreamTimeoutError):
                await provider.retrieve_payment_intent("pi_1")

    @pytest.mark.asyncio
    async def test_provider_error_is_rejected(self):
        """Test provider-side errors map to UpstreamRejectedError."""
        provider = StripePaymentProvider(api_key="sk_test_123", timeout_seconds=5)
        with patch(
            "services.payment_service.stripe.Refund.create",
            side_effect=stripe.StripeError("charge already refunded"),
        ):
            with pytest.raises(UpstreamRejectedError):
                await provider.refund("pi_1", 500)

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        """Test an unconfigured provider rejects calls without contacting Stripe."""
        provider = StripePaymentProvider(api_key="", timeout_seconds=5)
        with patch("services.payment_service.stripe.PaymentIntent.retrieve") as retrieve:
            with pytest.raises(UpstreamRejectedError):
                await provider.retrieve_payment_intent("pi_1")
        retrieve.assert_not_called()
