"""
Unit tests for timestamp helpers.

Tests cover:
- Fixed-width stored form
- Parsing with Z, offsets and mixed precision
- Lexical order matching chronological order
- UTC range limits and early-year padding
"""

from datetime import datetime, timezone

import pytest

from fieldsync.clock import (
    SystemClock,
    format_timestamp,
    normalize_timestamp,
    parse_timestamp,
)


class TestTimestamps:
    """Tests for the stored timestamp form."""

    def test_format_naive_is_utc(self):
        """Naive datetimes are rendered as UTC."""
        assert format_timestamp(datetime(2025, 1, 2, 3, 4, 5)) == "2025-01-02T03:04:05.000000Z"

    def test_format_converts_to_utc(self):
        """Aware datetimes are converted to UTC."""
        value = parse_timestamp("2025-01-02T10:04:05+07:00")
        assert value == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2025-01-02T03:04:05.000000Z"

    def test_normalize_mixed_precision(self):
        """Client timestamps of any precision normalize to microseconds."""
        assert normalize_timestamp("2025-01-02T03:04:05Z") == "2025-01-02T03:04:05.000000Z"
        assert normalize_timestamp("2025-01-02T03:04:05.123Z") == "2025-01-02T03:04:05.123000Z"

    def test_normalized_order_is_lexical(self):
        """Normalized strings compare in time order."""
        earlier = normalize_timestamp("2025-01-02T03:04:05.9Z")
        later = normalize_timestamp("2025-01-02T03:04:06Z")
        assert earlier < later

    @pytest.mark.parametrize("value", ["", "   ", "not-a-date", "2025-13-01T00:00:00Z"])
    def test_parse_invalid(self, value):
        """Malformed timestamps raise ValueError."""
        with pytest.raises(ValueError):
            parse_timestamp(value)

    @pytest.mark.parametrize("value", ["0001-01-01T00:00:00+01:00", "9999-12-31T23:30:00-01:00"])
    def test_parse_outside_utc_range(self, value):
        """Offsets that push the instant outside years 1-9999 raise ValueError."""
        with pytest.raises(ValueError, match="out of range"):
            parse_timestamp(value)

    def test_format_pads_early_years(self):
        """Years before 1000 keep four digits so lexical order still holds."""
        early = format_timestamp(datetime(5, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        assert early == "0005-01-02T03:04:05.000000Z"
        assert early < "1970-01-01T00:00:00.000000Z"

    def test_system_clock_is_aware(self):
        """System clock returns aware UTC datetimes."""
        assert SystemClock().now().tzinfo is not None
