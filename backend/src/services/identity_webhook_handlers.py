"""
Identity provider user lifecycle events.

The identity provider owns sign-up and login; these handlers keep the local
business row in step. Deleting a user only deactivates the business so its
appointment history is retained.
"""

import logging
import secrets
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from core.constants import DEFAULT_TIER
from core.exceptions import ValidationFailedError
from models import User

logger = logging.getLogger(__name__)

WIDGET_ID_BYTES = 12


def generate_widget_id() -> str:
    return secrets.token_urlsafe(WIDGET_ID_BYTES)


def _primary_email(data: Dict[str, Any]) -> Optional[str]:
    addresses = data.get("email_addresses") or []
    primary_id = data.get("primary_email_address_id")
    for address in addresses:
        if primary_id and address.get("id") == primary_id:
            return address.get("email_address")
    if addresses:
        return addresses[0].get("email_address")
    return None


def _user_by_external_id(db: Session, external_id: Optional[str]) -> Optional[User]:
    if not external_id:
        return None
    return db.query(User).filter(User.external_id == external_id).first()


def handle_identity_event(db: Session, event: Dict[str, Any]) -> None:
    event_type = event.get("type")
    data = event.get("data") or {}

    if event_type == "user.created":
        email = _primary_email(data)
        if not email:
            raise ValidationFailedError("No email found on created user")
        user = _user_by_external_id(db, data.get("id"))
        if user is not None:
            # Redelivery after a partial failure; keep the existing widget id
            user.email = email
            user.is_active = True
            logger.info(f"Identity user {data.get('id')} already exists as user {user.id}")
            return
        user = User(
            external_id=data["id"],
            email=email,
            widget_id=generate_widget_id(),
            subscription_tier=DEFAULT_TIER,
            is_active=True,
        )
        db.add(user)
        db.flush()
        logger.info(f"Created user {user.id} for identity user {data['id']}")

    elif event_type == "user.updated":
        user = _user_by_external_id(db, data.get("id"))
        if user is None:
            logger.warning(f"Update for unknown identity user {data.get('id')}")
            return
        email = _primary_email(data)
        if email:
            user.email = email
        logger.info(f"Updated user {user.id} from identity provider")

    elif event_type == "user.deleted":
        user = _user_by_external_id(db, data.get("id"))
        if user is None:
            logger.warning(f"Delete for unknown identity user {data.get('id')}")
            return
        user.is_active = False
        logger.info(f"Deactivated user {user.id}; appointments retained")

    else:
        logger.debug(f"Unhandled identity event type: {event_type}")
