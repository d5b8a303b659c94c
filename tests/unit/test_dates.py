"""
Tests for upsales.dates module.
"""
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from upsales.dates import format_display_date, month_key, parse_datetime, resolve_month_year

KYIV = ZoneInfo("Europe/Kyiv")


class TestResolveMonthYear:
    """Month resolution precedence and edge cases."""

    def test_iso_string(self):
        assert resolve_month_year("2025-11-03T10:15:00Z", KYIV) == (11, 2025)

    def test_iso_converted_to_local_month(self):
        """23:30 UTC on Nov 30 is already December in Kyiv."""
        assert resolve_month_year("2025-11-30T23:30:00Z", KYIV) == (12, 2025)

    def test_iso_without_timezone_setting(self):
        assert resolve_month_year("2025-11-30T23:30:00Z") == (11, 2025)

    def test_display_format(self):
        assert resolve_month_year("03.11.2025 10:15") == (11, 2025)
        assert resolve_month_year("03.11.2025") == (11, 2025)

    def test_display_format_read_numerically(self):
        """Day is not validated against the month, only month 1-12."""
        assert resolve_month_year("31.11.2025") == (11, 2025)

    def test_display_format_invalid_month(self):
        assert resolve_month_year("01.13.2025") is None

    def test_keycrm_format(self):
        assert resolve_month_year("2025-11-03 10:15:00") == (11, 2025)

    def test_date_objects(self):
        assert resolve_month_year(date(2025, 11, 3)) == (11, 2025)
        assert resolve_month_year(datetime(2025, 10, 31, 23, 0)) == (10, 2025)

    @pytest.mark.parametrize("value", [None, "", "garbage", "Tuesday"])
    def test_unresolvable(self, value):
        assert resolve_month_year(value, KYIV) is None


class TestFormatting:
    """Display formatting."""

    def test_iso_in_local_time(self):
        assert format_display_date("2025-11-03T08:15:00Z", KYIV) == "03.11.2025 10:15"

    def test_keycrm_format(self):
        assert format_display_date("2025-11-03 10:15:00") == "03.11.2025 10:15"

    def test_display_string_kept(self):
        assert format_display_date(" 03.11.2025 10:15 ") == "03.11.2025 10:15"

    def test_unparseable_returned_raw(self):
        assert format_display_date("garbage") == "garbage"

    def test_empty(self):
        assert format_display_date(None) == ""

    def test_parse_datetime_invalid_display_date(self):
        assert parse_datetime("31.02.2025") is None

    def test_month_key(self):
        assert month_key(3, 2025) == "3.2025"
        assert month_key(11, 2025) == "11.2025"
