"""
Test configuration and shared fixtures for the Booking Engine test suite.

Each test gets its own in-memory SQLite database built from the model
metadata, so tests never share state. External collaborators (calendar,
payment provider, email transport) are replaced by in-process fakes that
record what they were asked to do.
"""

import os

# Must be set before core.database creates its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import base64
import hashlib
import hmac
import secrets
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  # register all mappers
from core.database import Base, get_db
from core.exceptions import UpstreamRejectedError
from models import Appointment, AppointmentType, AvailabilityRule, DateOverride, User
from services.calendar_gateway import CalendarEventRef
from services.notification_service import EmailMessage, NotificationService
from services.payment_service import PaymentIntentInfo, RefundInfo
from services.rate_limiter import RateLimiter
from services.slot_cache import SlotCache
from utils.interval_utils import Interval

# A Monday, far enough ahead that no test depends on "today"
MONDAY = date(2030, 6, 3)
TUESDAY = MONDAY + timedelta(days=1)

STRIPE_TEST_SECRET = "whsec_test_stripe_secret"
IDENTITY_TEST_SECRET = "whsec_" + "c2VjcmV0LWtleS1mb3ItaWRlbnRpdHktd2ViaG9va3M="


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def stripe_signature_header(payload: bytes, secret: str = STRIPE_TEST_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header for a payload, the way Stripe signs it."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def svix_headers(payload: bytes, message_id: str = "msg_1", secret: str = IDENTITY_TEST_SECRET,
                 timestamp: Optional[int] = None) -> Dict[str, str]:
    """Build svix-id / svix-timestamp / svix-signature headers for a payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    key = base64.b64decode(secret[len("whsec_"):])
    signed = f"{message_id}.{timestamp}.".encode("utf-8") + payload
    signature = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode("utf-8")
    return {
        "svix-id": message_id,
        "svix-timestamp": str(timestamp),
        "svix-signature": f"v1,{signature}",
    }


# ===== Fakes =====

class FakeBusyProvider:
    """Returns canned busy intervals and records every fetch."""

    def __init__(self, intervals: Optional[List[Interval]] = None, error: Optional[Exception] = None):
        self.intervals = intervals or []
        self.error = error
        self.calls: List[tuple] = []

    async def fetch_busy_intervals(self, user: User, start: datetime, end: datetime) -> List[Interval]:
        self.calls.append((user.id, start, end))
        if self.error is not None:
            raise self.error
        return list(self.intervals)


class FakeCalendarWriter:
    """Records created and deleted events."""

    def __init__(self, meeting_link: Optional[str] = None, fail: bool = False):
        self.meeting_link = meeting_link
        self.fail = fail
        self.created: List[int] = []
        self.deleted: List[str] = []

    async def create_event(self, user, appointment, appointment_type) -> Optional[CalendarEventRef]:
        if self.fail:
            raise RuntimeError("calendar unavailable")
        self.created.append(appointment.id)
        link = self.meeting_link if appointment_type.enable_google_meet else None
        return CalendarEventRef(event_id=f"evt_{appointment.id}", meeting_link=link)

    async def delete_event(self, user, event_id: str) -> None:
        if self.fail:
            raise RuntimeError("calendar unavailable")
        self.deleted.append(event_id)


class FakePaymentProvider:
    """In-memory payment provider with configurable intents and refund failures."""

    def __init__(self):
        self.intents: Dict[str, PaymentIntentInfo] = {}
        self.created: List[Dict[str, Any]] = []
        self.refunds: List[tuple] = []
        self.refund_keys: List[Optional[str]] = []
        self.refund_error: Optional[Exception] = None
        self.retrievals = 0

    def add_intent(
        self,
        intent_id: str,
        amount: int,
        appointment_type_id: int,
        status: str = "succeeded",
        is_deposit: bool = False,
    ) -> PaymentIntentInfo:
        intent = PaymentIntentInfo(
            id=intent_id,
            status=status,
            amount=amount,
            amount_received=amount if status == "succeeded" else 0,
            currency="usd",
            metadata={
                "appointmentTypeId": str(appointment_type_id),
                "isDeposit": "true" if is_deposit else "false",
            },
            client_secret=f"{intent_id}_secret",
        )
        self.intents[intent_id] = intent
        return intent

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentInfo:
        self.retrievals += 1
        if payment_intent_id not in self.intents:
            raise UpstreamRejectedError("No such payment intent")
        return self.intents[payment_intent_id]

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        description: str,
        receipt_email: Optional[str] = None,
        destination_account: Optional[str] = None,
    ) -> PaymentIntentInfo:
        intent_id = f"pi_{len(self.created) + 1}"
        self.created.append({
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "description": description,
            "receipt_email": receipt_email,
            "destination_account": destination_account,
        })
        intent = PaymentIntentInfo(
            id=intent_id,
            status="requires_payment_method",
            amount=amount,
            amount_received=0,
            currency=currency,
            metadata=metadata,
            client_secret=f"{intent_id}_secret",
        )
        self.intents[intent_id] = intent
        return intent

    async def refund(self, payment_intent_id: str, amount: int, idempotency_key: Optional[str] = None) -> RefundInfo:
        if self.refund_error is not None:
            raise self.refund_error
        self.refunds.append((payment_intent_id, amount))
        self.refund_keys.append(idempotency_key)
        return RefundInfo(id=f"re_{len(self.refunds)}", amount=amount, currency="usd", status="succeeded")


class RecordingEmailSender:
    """Collects outgoing messages instead of delivering them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: List[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        if self.fail:
            raise RuntimeError("smtp down")
        self.messages.append(message)

    def subjects(self) -> List[str]:
        return [message.subject for message in self.messages]


# ===== Database fixtures =====

@pytest.fixture
def db_engine():
    """Fresh in-memory database per test, shared across threads via a static pool."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    """Session configured like the application's SessionLocal."""
    session_factory = sessionmaker(bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ===== Factories =====

def create_user(db: Session, **overrides: Any) -> User:
    values: Dict[str, Any] = {
        "external_id": f"user_{secrets.token_hex(4)}",
        "email": "owner@example.com",
        "business_name": "Acme Studio",
        "widget_id": f"wid_{secrets.token_hex(4)}",
        "timezone": "UTC",
        "is_active": True,
        "subscription_tier": "booking",
        "monthly_bookings": 0,
    }
    values.update(overrides)
    user = User(**values)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_appointment_type(db: Session, user: User, **overrides: Any) -> AppointmentType:
    values: Dict[str, Any] = {
        "user_id": user.id,
        "name": "Consultation",
        "duration": 60,
        "buffer_before": 0,
        "buffer_after": 0,
        "require_payment": False,
        "currency": "usd",
        "refund_policy": "full",
        "enable_google_meet": False,
        "active": True,
    }
    values.update(overrides)
    appointment_type = AppointmentType(**values)
    db.add(appointment_type)
    db.commit()
    db.refresh(appointment_type)
    return appointment_type


def create_rule(db: Session, user: User, day_of_week: int, start: str = "09:00", end: str = "12:00",
                is_available: bool = True) -> AvailabilityRule:
    rule = AvailabilityRule(
        user_id=user.id,
        day_of_week=day_of_week,
        start_time=start,
        end_time=end,
        is_available=is_available,
    )
    db.add(rule)
    db.commit()
    return rule


def create_override(db: Session, user: User, day: date, is_available: bool = False,
                    start: Optional[str] = None, end: Optional[str] = None) -> DateOverride:
    override = DateOverride(user_id=user.id, date=day, is_available=is_available, start_time=start, end_time=end)
    db.add(override)
    db.commit()
    return override


def create_appointment(db: Session, user: User, appointment_type: AppointmentType, start: datetime,
                       **overrides: Any) -> Appointment:
    values: Dict[str, Any] = {
        "user_id": user.id,
        "appointment_type_id": appointment_type.id,
        "start_time": start,
        "end_time": start + timedelta(minutes=appointment_type.duration),
        "timezone": "UTC",
        "status": "confirmed",
        "visitor_name": "Existing Visitor",
        "visitor_email": "existing@example.com",
        "cancellation_token": secrets.token_hex(64),
    }
    values.update(overrides)
    appointment = Appointment(**values)
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


@pytest.fixture
def user(db_session) -> User:
    """Business open 09:00-12:00 UTC on Mondays."""
    business = create_user(db_session)
    create_rule(db_session, business, day_of_week=1, start="09:00", end="12:00")
    return business


@pytest.fixture
def appointment_type(db_session, user) -> AppointmentType:
    return create_appointment_type(db_session, user)


@pytest.fixture
def paid_appointment_type(db_session, user) -> AppointmentType:
    return create_appointment_type(
        db_session, user, name="Paid Session", require_payment=True, price=10000,
    )


# ===== Collaborator fixtures =====

@pytest.fixture
def slot_cache() -> SlotCache:
    return SlotCache()


@pytest.fixture
def busy_provider() -> FakeBusyProvider:
    return FakeBusyProvider()


@pytest.fixture
def calendar_writer() -> FakeCalendarWriter:
    return FakeCalendarWriter(meeting_link="https://meet.google.com/abc-defg-hij")


@pytest.fixture
def payment_provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def notifications(email_sender) -> NotificationService:
    return NotificationService(email_sender)


# ===== HTTP fixtures =====

@pytest.fixture
def app(db_session, slot_cache, busy_provider, calendar_writer, payment_provider, email_sender):
    """Application wired to the test database and fakes."""
    from main import app as fastapi_app, configure_services

    configure_services(
        fastapi_app,
        cache=slot_cache,
        busy_provider=busy_provider,
        calendar_writer=calendar_writer,
        payment_provider=payment_provider,
        email_sender=email_sender,
        rate_limiter=RateLimiter(),
        webhook_secrets={"stripe": STRIPE_TEST_SECRET, "identity": IDENTITY_TEST_SECRET},
    )

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
