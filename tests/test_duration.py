"""Tests for duration parsing."""

import pytest

from bantai.ratelimit import parse_duration


class TestParseDuration:
    """Test duration strings."""

    def test_short_units(self):
        assert parse_duration("500ms") == 500
        assert parse_duration("10s") == 10_000
        assert parse_duration("5m") == 300_000
        assert parse_duration("1h") == 3_600_000
        assert parse_duration("1d") == 86_400_000
        assert parse_duration("1w") == 604_800_000
        assert parse_duration("1y") == 31_557_600_000

    def test_long_units(self):
        assert parse_duration("2 hours") == 7_200_000
        assert parse_duration("1 minute") == 60_000
        assert parse_duration("3 days") == 259_200_000

    def test_bare_number_is_milliseconds(self):
        assert parse_duration("250") == 250

    def test_decimals(self):
        assert parse_duration("1.5h") == 5_400_000
        assert parse_duration(".5s") == 500

    def test_case_and_whitespace(self):
        assert parse_duration(" 10 S ") == 10_000

    def test_invalid(self):
        """Malformed, unknown and non-positive durations are rejected."""
        for value in ("", "abc", "10 parsecs", "h1", "0s", "-5m"):
            with pytest.raises(ValueError):
                parse_duration(value)
