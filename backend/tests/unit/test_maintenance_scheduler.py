"""
Tests for the cache and usage maintenance scheduler.
"""

from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from conftest import create_user
from services.maintenance_scheduler import MaintenanceScheduler
from services.usage_service import UsageLimiter
from utils.datetime_utils import utc_now


class TestMaintenanceScheduler:
    """Test job registration and job bodies."""

    @pytest.mark.asyncio
    async def test_start_registers_jobs(self, slot_cache):
        """Test both recurring jobs are registered and the scheduler stops cleanly."""
        scheduler = MaintenanceScheduler(slot_cache, UsageLimiter())
        await scheduler.start_scheduler()
        try:
            assert scheduler.scheduler.get_job("slot_cache_cleanup") is not None
            assert scheduler.scheduler.get_job("monthly_usage_reset") is not None
        finally:
            await scheduler.stop_scheduler()
        assert scheduler._is_started is False

    @pytest.mark.asyncio
    async def test_cache_cleanup(self):
        """Test the cleanup job purges the cache and idle rate-limit counters."""
        cache = MagicMock()
        cache.cleanup_expired.return_value = 3
        rate_limiter = MagicMock()
        scheduler = MaintenanceScheduler(cache, UsageLimiter(), rate_limiter)

        await scheduler._run_cache_cleanup()

        cache.cleanup_expired.assert_called_once()
        rate_limiter.cleanup.assert_called_once()

    @pytest.mark.asyncio
    async def test_cache_cleanup_error_swallowed(self):
        """Test a failing cleanup does not propagate into the scheduler."""
        cache = MagicMock()
        cache.cleanup_expired.side_effect = RuntimeError("boom")
        await MaintenanceScheduler(cache, UsageLimiter())._run_cache_cleanup()

    def test_usage_reset(self, db_session, slot_cache):
        """Test the reset job zeroes stale counters using a fresh session."""
        stale = create_user(db_session, monthly_bookings=5, last_usage_reset=utc_now() - timedelta(days=40))

        @contextmanager
        def fake_db_context():
            yield db_session

        with patch("services.maintenance_scheduler.get_db_context", fake_db_context):
            MaintenanceScheduler(slot_cache, UsageLimiter())._execute_usage_reset()

        db_session.refresh(stale)
        assert stale.monthly_bookings == 0

    def test_usage_reset_error_swallowed(self, db_session, slot_cache):
        """Test a failing reset is logged, not raised."""
        limiter = MagicMock()
        limiter.reset_monthly_usage.side_effect = RuntimeError("db down")

        @contextmanager
        def fake_db_context():
            yield db_session

        with patch("services.maintenance_scheduler.get_db_context", fake_db_context):
            MaintenanceScheduler(slot_cache, limiter)._execute_usage_reset()
