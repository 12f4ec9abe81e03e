"""
Monthly booking usage limits per subscription tier.

The booking path only asks two questions of this module: "may this business
take another booking?" and "count one more booking". Tier knowledge stays here.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from core.constants import DEFAULT_TIER, TIER_LIMITS
from models import User
from utils.datetime_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageCheck:
    allowed: bool
    current: int
    limit: float
    """Monthly limit; ``math.inf`` when unlimited."""

    @property
    def unlimited(self) -> bool:
        return math.isinf(self.limit)


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _needs_reset(last_reset: Optional[datetime], now: datetime) -> bool:
    if last_reset is None:
        return True
    last_reset = ensure_utc(last_reset)
    return (last_reset.year, last_reset.month) != (now.year, now.month)


class UsageLimiter:
    """Check and count monthly bookings against the business's tier."""

    @staticmethod
    def monthly_booking_limit(user: User) -> float:
        limits = TIER_LIMITS.get(user.subscription_tier or DEFAULT_TIER, TIER_LIMITS[DEFAULT_TIER])
        return limits["monthly_bookings"]

    def check(self, db: Session, user: User) -> UsageCheck:
        """
        Whether the business may accept another booking this month.

        A counter left over from a previous month counts as zero.
        """
        limit = self.monthly_booking_limit(user)
        current = 0 if _needs_reset(user.last_usage_reset, utc_now()) else (user.monthly_bookings or 0)
        allowed = math.isinf(limit) or current < limit
        return UsageCheck(allowed=allowed, current=current, limit=limit)

    def increment(self, db: Session, user: User) -> None:
        """Count one booking, rolling the counter over first if a new month started."""
        now = utc_now()
        if _needs_reset(user.last_usage_reset, now):
            db.execute(
                update(User)
                .where(User.id == user.id)
                .values(monthly_bookings=1, last_usage_reset=now)
            )
        else:
            db.execute(
                update(User)
                .where(User.id == user.id)
                .values(monthly_bookings=User.monthly_bookings + 1)
            )
        db.commit()
        db.refresh(user)

    def reset_monthly_usage(self, db: Session) -> int:
        """
        Zero the counters of every business last reset before this month.

        Returns:
            Number of businesses reset
        """
        now = utc_now()
        result = db.execute(
            update(User)
            .where(or_(User.last_usage_reset.is_(None), User.last_usage_reset < _month_start(now)))
            .values(monthly_bookings=0, last_usage_reset=now)
        )
        db.commit()
        count = result.rowcount or 0
        logger.info(f"Reset monthly booking usage for {count} business(es)")
        return count
