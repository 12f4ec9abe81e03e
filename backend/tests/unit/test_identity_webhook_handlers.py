"""
Tests for identity provider user lifecycle handlers.
"""

import pytest

from conftest import create_appointment, create_appointment_type, create_user, utc
from core.exceptions import ValidationFailedError
from models import Appointment, User
from services.identity_webhook_handlers import handle_identity_event


def _user_data(external_id="user_abc", primary="idn_2"):
    return {
        "id": external_id,
        "primary_email_address_id": primary,
        "email_addresses": [
            {"id": "idn_1", "email_address": "old@example.com"},
            {"id": "idn_2", "email_address": "primary@example.com"},
        ],
    }


class TestUserCreated:

    def test_creates_business(self, db_session):
        """Test a new identity user becomes an active free-tier business with a widget id."""
        handle_identity_event(db_session, {"type": "user.created", "data": _user_data()})
        db_session.commit()

        created = db_session.query(User).filter(User.external_id == "user_abc").one()
        assert created.email == "primary@example.com"
        assert created.subscription_tier == "free"
        assert created.is_active is True
        assert created.widget_id

    def test_falls_back_to_first_email(self, db_session):
        """Test the first address is used when no primary matches."""
        handle_identity_event(db_session, {"type": "user.created", "data": _user_data(primary=None)})

        assert db_session.query(User).filter(User.external_id == "user_abc").one().email == "old@example.com"

    def test_redelivery_keeps_widget_id(self, db_session):
        """Test a repeated creation updates the existing row instead of duplicating it."""
        existing = create_user(db_session, external_id="user_abc", widget_id="wid_keep", is_active=False)

        handle_identity_event(db_session, {"type": "user.created", "data": _user_data()})

        assert db_session.query(User).count() == 1
        assert existing.widget_id == "wid_keep"
        assert existing.is_active is True
        assert existing.email == "primary@example.com"

    def test_missing_email(self, db_session):
        """Test a created user without an email address is rejected."""
        with pytest.raises(ValidationFailedError):
            handle_identity_event(db_session, {"type": "user.created", "data": {"id": "user_x", "email_addresses": []}})


class TestUserUpdatedAndDeleted:

    def test_updated_email(self, db_session):
        """Test an email change is mirrored."""
        business = create_user(db_session, external_id="user_abc")

        handle_identity_event(db_session, {"type": "user.updated", "data": _user_data()})

        assert business.email == "primary@example.com"

    def test_update_unknown_user(self, db_session):
        """Test an update for an unknown user is ignored."""
        handle_identity_event(db_session, {"type": "user.updated", "data": _user_data("user_missing")})
        assert db_session.query(User).count() == 0

    def test_deleted_deactivates_and_keeps_appointments(self, db_session):
        """Test deletion deactivates the business and retains its appointments."""
        business = create_user(db_session, external_id="user_abc")
        consultation = create_appointment_type(db_session, business)
        create_appointment(db_session, business, consultation, utc(2030, 6, 3, 9))

        handle_identity_event(db_session, {"type": "user.deleted", "data": {"id": "user_abc", "deleted": True}})
        db_session.commit()

        assert business.is_active is False
        assert db_session.query(Appointment).filter(Appointment.user_id == business.id).count() == 1

    def test_unhandled_type(self, db_session):
        """Test other event types are accepted without effect."""
        handle_identity_event(db_session, {"type": "session.created", "data": {"id": "sess_1"}})
        assert db_session.query(User).count() == 0
