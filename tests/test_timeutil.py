"""
Tests for timestamp parsing helpers.
"""

from datetime import datetime, timedelta, timezone

import pytest

from pairlog.utils.timeutil import ensure_utc, parse_timestamp, utc_now


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_iso_with_z_suffix(self):
        result = parse_timestamp("2025-03-10T14:00:00Z")

        assert result == datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)

    def test_iso_with_offset_is_converted_to_utc(self):
        result = parse_timestamp("2025-03-10T16:00:00+02:00")

        assert result == datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)
        assert result.tzinfo == timezone.utc

    def test_naive_iso_is_treated_as_utc(self):
        result = parse_timestamp("2025-03-10T14:00:00.250")

        assert result.tzinfo == timezone.utc
        assert result.microsecond == 250000

    def test_epoch_seconds(self):
        result = parse_timestamp(1741615200)

        assert result == datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self):
        result = parse_timestamp(1741615200000)

        assert result == datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)

    def test_numeric_string_is_epoch(self):
        assert parse_timestamp("1741615200000") == parse_timestamp(1741615200)

    def test_datetime_passthrough(self):
        value = datetime(2025, 3, 10, 14, 0)

        assert parse_timestamp(value) == value.replace(tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", "   ", "yesterday", "2025-13-45", None, True, [1]])
    def test_invalid_values_raise(self, value):
        with pytest.raises(ValueError):
            parse_timestamp(value)


class TestEnsureUtc:
    """Tests for ensure_utc."""

    def test_none(self):
        assert ensure_utc(None) is None

    def test_naive_gets_utc(self):
        assert ensure_utc(datetime(2025, 1, 1)).tzinfo == timezone.utc

    def test_aware_is_converted(self):
        eastern = timezone(timedelta(hours=-5))
        value = datetime(2025, 1, 1, 7, 0, tzinfo=eastern)

        assert ensure_utc(value) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_utc_now_is_aware():
    assert utc_now().tzinfo is not None
