"""Tests for CLI formatting helpers."""

from hasync.formatting import format_date, format_time_ago

NOW = 1_700_000_000_000


class TestFormatTimeAgo:
    """Test relative time formatting."""

    def test_never(self):
        assert format_time_ago(None) == "Never"

    def test_just_now(self):
        assert format_time_ago(NOW - 30_000, now=NOW) == "Just now"

    def test_minutes(self):
        assert format_time_ago(NOW - 60_000, now=NOW) == "1 minute ago"
        assert format_time_ago(NOW - 5 * 60_000, now=NOW) == "5 minutes ago"

    def test_hours(self):
        assert format_time_ago(NOW - 2 * 3_600_000, now=NOW) == "2 hours ago"

    def test_days(self):
        assert format_time_ago(NOW - 86_400_000, now=NOW) == "1 day ago"


class TestFormatDate:
    def test_utc_date(self):
        assert format_date(NOW) == "2023-11-14"
