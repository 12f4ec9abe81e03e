"""
Unit tests for datetime utilities.

Covers wall-clock to instant conversion (including DST transitions), display
formatting, ISO parsing and day bounds.
"""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from hypothesis import given, strategies as st

from utils.datetime_utils import (
    date_range,
    ensure_utc,
    instant_to_local_display,
    is_valid_timezone,
    local_date_of,
    local_day_bounds,
    local_wall_clock_to_instant,
    parse_date_string,
    parse_iso_instant,
    parse_wall_clock,
    to_iso_utc,
)


class TestWallClockConversion:
    """Test converting business wall-clock times to instants."""

    def test_utc_business(self):
        """Test a UTC business maps wall clock directly."""
        instant = local_wall_clock_to_instant(date(2030, 6, 3), "09:00", "UTC")
        assert instant == datetime(2030, 6, 3, 9, 0, tzinfo=timezone.utc)

    def test_summer_offset(self):
        """Test New York summer time is UTC-4."""
        instant = local_wall_clock_to_instant(date(2030, 6, 3), "09:00", "America/New_York")
        assert instant == datetime(2030, 6, 3, 13, 0, tzinfo=timezone.utc)

    def test_winter_offset(self):
        """Test New York winter time is UTC-5."""
        instant = local_wall_clock_to_instant(date(2030, 1, 7), "09:00", "America/New_York")
        assert instant == datetime(2030, 1, 7, 14, 0, tzinfo=timezone.utc)

    def test_spring_forward_gap_uses_pre_transition_offset(self):
        """Test a nonexistent time resolves with the standard-time offset."""
        # 02:30 does not exist on 2030-03-10 in New York
        instant = local_wall_clock_to_instant(date(2030, 3, 10), "02:30", "America/New_York")
        assert instant == datetime(2030, 3, 10, 7, 30, tzinfo=timezone.utc)

    def test_fall_back_overlap_uses_first_occurrence(self):
        """Test an ambiguous time resolves to its first (daylight) occurrence."""
        instant = local_wall_clock_to_instant(date(2030, 11, 3), "01:30", "America/New_York")
        assert instant == datetime(2030, 11, 3, 5, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("day,wall,tz_name,expected", [
        # Europe: gap on the last Sunday of March, overlap on the last Sunday of October
        (date(2030, 3, 31), "02:30", "Europe/Berlin", datetime(2030, 3, 31, 1, 30, tzinfo=timezone.utc)),
        (date(2030, 10, 27), "02:30", "Europe/Berlin", datetime(2030, 10, 27, 0, 30, tzinfo=timezone.utc)),
        # Southern hemisphere: overlap in April, gap in October
        (date(2030, 4, 7), "02:30", "Australia/Sydney", datetime(2030, 4, 6, 15, 30, tzinfo=timezone.utc)),
        (date(2030, 10, 6), "02:30", "Australia/Sydney", datetime(2030, 10, 5, 16, 30, tzinfo=timezone.utc)),
    ])
    def test_transition_days_in_other_zone_families(self, day, wall, tz_name, expected):
        """Test the same gap and overlap policy holds outside North America."""
        assert local_wall_clock_to_instant(day, wall, tz_name) == expected

    def test_result_is_aware_utc(self):
        """Test returned instants are tagged UTC."""
        instant = local_wall_clock_to_instant(date(2030, 6, 3), "17:45", "Europe/Berlin")
        assert instant.tzinfo == timezone.utc

    def test_invalid_time_raises(self):
        """Test malformed wall-clock strings are rejected."""
        with pytest.raises(ValueError):
            local_wall_clock_to_instant(date(2030, 6, 3), "25:00", "UTC")
        with pytest.raises(ValueError):
            local_wall_clock_to_instant(date(2030, 6, 3), "nine", "UTC")

    def test_unknown_timezone_raises(self):
        """Test unknown zones are rejected."""
        with pytest.raises(ValueError, match="Unknown timezone"):
            local_wall_clock_to_instant(date(2030, 6, 3), "09:00", "Mars/Olympus")

    @given(
        day=st.dates(min_value=date(2000, 1, 1), max_value=date(2100, 12, 31)),
        minutes=st.integers(min_value=0, max_value=24 * 60 - 1),
    )
    def test_round_trip_in_fixed_offset_zone(self, day, minutes):
        """Test converting to an instant and back preserves the wall clock."""
        wall = f"{minutes // 60:02d}:{minutes % 60:02d}"
        instant = local_wall_clock_to_instant(day, wall, "Asia/Tokyo")
        local = instant.astimezone(ZoneInfo("Asia/Tokyo"))
        assert local.date() == day
        assert (local.hour, local.minute) == (minutes // 60, minutes % 60)


class TestDisplayFormatting:
    """Test the 12-hour display format."""

    def test_morning(self):
        """Test a morning time in the business zone."""
        assert instant_to_local_display(datetime(2030, 6, 3, 13, 0, tzinfo=timezone.utc), "America/New_York") == "9:00 AM"

    def test_midnight_and_noon(self):
        """Test 00:xx shows as 12 AM and 12:xx as 12 PM."""
        assert instant_to_local_display(datetime(2030, 6, 3, 0, 5, tzinfo=timezone.utc), "UTC") == "12:05 AM"
        assert instant_to_local_display(datetime(2030, 6, 3, 12, 30, tzinfo=timezone.utc), "UTC") == "12:30 PM"

    def test_afternoon(self):
        """Test afternoon times use PM."""
        assert instant_to_local_display(datetime(2030, 6, 3, 15, 0, tzinfo=timezone.utc), "UTC") == "3:00 PM"


class TestParsing:
    """Test ISO and wall-clock parsing."""

    def test_parse_z_suffix(self):
        """Test parsing a Z-suffixed timestamp."""
        assert parse_iso_instant("2030-06-03T09:00:00Z") == datetime(2030, 6, 3, 9, 0, tzinfo=timezone.utc)

    def test_parse_offset_normalizes_to_utc(self):
        """Test parsing an offset timestamp converts to UTC."""
        parsed = parse_iso_instant("2030-06-03T11:00:00+02:00")
        assert parsed == datetime(2030, 6, 3, 9, 0, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_parse_requires_offset(self):
        """Test naive timestamps are rejected."""
        with pytest.raises(ValueError, match="timezone offset"):
            parse_iso_instant("2030-06-03T09:00:00")

    def test_parse_garbage(self):
        """Test malformed timestamps are rejected."""
        with pytest.raises(ValueError):
            parse_iso_instant("not a date")

    def test_parse_wall_clock(self):
        """Test HH:MM parsing."""
        assert parse_wall_clock("07:05").hour == 7
        assert parse_wall_clock("07:05").minute == 5

    def test_parse_date_string_normalizes(self):
        """Test single-digit months and days are accepted."""
        assert parse_date_string("2030/6/3") == date(2030, 6, 3)
        assert parse_date_string("2030-06-03") == date(2030, 6, 3)
        with pytest.raises(ValueError):
            parse_date_string("")

    def test_to_iso_utc(self):
        """Test RFC 3339 output with a Z suffix."""
        assert to_iso_utc(datetime(2030, 6, 3, 9, 0, tzinfo=timezone.utc)) == "2030-06-03T09:00:00Z"
        berlin = datetime(2030, 6, 3, 11, 0, tzinfo=ZoneInfo("Europe/Berlin"))
        assert to_iso_utc(berlin) == "2030-06-03T09:00:00Z"


class TestDayHelpers:
    """Test day bounds, ranges and small helpers."""

    def test_regular_day_is_24_hours(self):
        """Test a normal day spans 24 hours."""
        start, end = local_day_bounds(date(2030, 6, 3), "America/New_York")
        assert start == datetime(2030, 6, 3, 4, 0, tzinfo=timezone.utc)
        assert end - start == timedelta(hours=24)

    def test_spring_forward_day_is_23_hours(self):
        """Test the spring-forward day is one hour short."""
        start, end = local_day_bounds(date(2030, 3, 10), "America/New_York")
        assert end - start == timedelta(hours=23)

    def test_fall_back_day_is_25_hours(self):
        """Test the fall-back day is one hour long."""
        start, end = local_day_bounds(date(2030, 11, 3), "America/New_York")
        assert end - start == timedelta(hours=25)

    def test_date_range_inclusive(self):
        """Test date ranges include both ends."""
        assert date_range(date(2030, 6, 3), date(2030, 6, 5)) == [
            date(2030, 6, 3), date(2030, 6, 4), date(2030, 6, 5),
        ]
        assert date_range(date(2030, 6, 3), date(2030, 6, 3)) == [date(2030, 6, 3)]
        assert date_range(date(2030, 6, 5), date(2030, 6, 3)) == []

    def test_local_date_of(self):
        """Test an instant's business-local date."""
        instant = datetime(2030, 6, 4, 2, 0, tzinfo=timezone.utc)
        assert local_date_of(instant, "America/Los_Angeles") == date(2030, 6, 3)

    def test_ensure_utc(self):
        """Test naive values are tagged UTC and aware values converted."""
        assert ensure_utc(None) is None
        assert ensure_utc(datetime(2030, 6, 3, 9, 0)).tzinfo == timezone.utc
        berlin = datetime(2030, 6, 3, 11, 0, tzinfo=ZoneInfo("Europe/Berlin"))
        assert ensure_utc(berlin) == datetime(2030, 6, 3, 9, 0, tzinfo=timezone.utc)

    def test_is_valid_timezone(self):
        """Test timezone validation."""
        assert is_valid_timezone("America/New_York")
        assert not is_valid_timezone("Nowhere/Special")
