"""
Payment provider subscription lifecycle events.

Mirrors subscription state onto the business row so tier limits (see
``UsageLimiter``) follow what the business pays for. Handlers only stage
changes on the session; the webhook processor commits them together with the
ledger flag.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from core.constants import DEFAULT_TIER, TIER_LIMITS
from models import User
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def _object_id(value: Any) -> Optional[str]:
    """Expanded objects carry an ``id``; collapsed ones are the id string itself."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _period_end(subscription: Dict[str, Any]) -> Optional[datetime]:
    # Newer API versions report the period on the subscription items
    if subscription.get("current_period_end"):
        return _timestamp(subscription["current_period_end"])
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return _timestamp(items[0].get("current_period_end"))
    return None


def _user_by_customer(db: Session, customer_id: Optional[str]) -> Optional[User]:
    if not customer_id:
        return None
    user = db.query(User).filter(User.stripe_customer_id == customer_id).first()
    if user is None:
        logger.error(f"No user found for customer {customer_id}")
    return user


class SubscriptionEventHandler:
    """Dispatches payment provider events by type. Unknown types are acknowledged."""

    def __init__(self, notifications: NotificationService) -> None:
        self.notifications = notifications

    async def __call__(self, db: Session, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        if event_type == "checkout.session.completed":
            self.checkout_completed(db, obj)
        elif event_type == "customer.subscription.updated":
            self.subscription_updated(db, obj)
        elif event_type == "customer.subscription.deleted":
            self.subscription_deleted(db, obj)
        elif event_type == "invoice.payment_succeeded":
            self.invoice_paid(db, obj)
        elif event_type == "invoice.payment_failed":
            await self.invoice_failed(db, obj)
        else:
            logger.debug(f"Unhandled payment provider event type: {event_type}")

    def checkout_completed(self, db: Session, session: Dict[str, Any]) -> None:
        customer_id = _object_id(session.get("customer"))
        subscription_id = _object_id(session.get("subscription"))
        if not customer_id or not subscription_id:
            logger.error(f"Missing customer or subscription in checkout session {session.get('id')}")
            return

        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        user = None
        if user_id and str(user_id).isdigit():
            user = db.query(User).filter(User.id == int(user_id)).first()
        elif user_id:
            user = db.query(User).filter(User.external_id == user_id).first()
        if user is None:
            logger.error(f"Checkout session {session.get('id')} has no resolvable userId ({user_id!r})")
            return

        tier = metadata.get("tier")
        if tier not in TIER_LIMITS:
            logger.error(f"Checkout session {session.get('id')} has unknown tier {tier!r}")
            return

        user.stripe_customer_id = customer_id
        user.stripe_subscription_id = subscription_id
        user.subscription_tier = tier
        user.subscription_status = "active"
        user.billing_interval = metadata.get("interval")
        user.cancel_at_period_end = False
        logger.info(f"User {user.id} subscribed to {tier} ({user.billing_interval})")

    def subscription_updated(self, db: Session, subscription: Dict[str, Any]) -> None:
        user = _user_by_customer(db, _object_id(subscription.get("customer")))
        if user is None:
            return
        user.subscription_status = subscription.get("status")
        user.current_period_end = _period_end(subscription)
        user.cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
        logger.info(f"User {user.id} subscription updated: {user.subscription_status}")

    def subscription_deleted(self, db: Session, subscription: Dict[str, Any]) -> None:
        user = _user_by_customer(db, _object_id(subscription.get("customer")))
        if user is None:
            return
        user.subscription_tier = DEFAULT_TIER
        user.subscription_status = "canceled"
        user.stripe_subscription_id = None
        user.current_period_end = None
        user.cancel_at_period_end = False
        logger.info(f"User {user.id} subscription deleted; downgraded to {DEFAULT_TIER}")

    def invoice_paid(self, db: Session, invoice: Dict[str, Any]) -> None:
        user = _user_by_customer(db, _object_id(invoice.get("customer")))
        if user is None:
            return
        if user.subscription_status != "active":
            user.subscription_status = "active"
            logger.info(f"User {user.id} subscription reactivated by payment")

    async def invoice_failed(self, db: Session, invoice: Dict[str, Any]) -> None:
        user = _user_by_customer(db, _object_id(invoice.get("customer")))
        if user is None:
            return
        user.subscription_status = "past_due"
        logger.info(f"User {user.id} subscription payment failed; marked past_due")
        try:
            await self.notifications.send_payment_failed_alert(user)
        except Exception as e:
            logger.exception(f"[payment_failed_alert] Failed to alert user {user.id}: {e}",
                             extra={"stage": "payment_failed_alert"})
