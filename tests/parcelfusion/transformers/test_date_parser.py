"""
Unit tests for date_parser module
"""
import pytest

from src.parcelfusion.transformers.date_parser import detect_date_format, is_plausible_year, parse_year


class TestDetectDateFormat:
    """Tests for detect_date_format"""

    @pytest.mark.parametrize("value,expected", [
        ("2024-01-15", "iso"),
        ("2024-01-15T08:30:00Z", "iso"),
        ("01/15/2024", "us"),
        ("15.01.2024", "eu"),
        ("1987", "year_only"),
        ("January 1987", None),
    ])
    def test_detects_dialects(self, value, expected):
        """Test each textual dialect is recognized"""
        assert detect_date_format(value) == expected


class TestParseYear:
    """Tests for parse_year"""

    def test_dialects_agree(self):
        """Test ISO, US and bare-year forms of the same date give the same year"""
        assert parse_year("2024-01-15") == parse_year("01/15/2024") == parse_year("2024") == 2024

    def test_integer_year(self):
        """Test plain numeric years"""
        assert parse_year(1925) == 1925
        assert parse_year(1925.0) == 1925

    def test_numeric_string_is_number(self):
        """Test numeric strings are read as numbers"""
        assert parse_year("1925.0") == 1925

    def test_unix_seconds(self):
        """Test second timestamps are read as dates"""
        # 2001-09-09T01:46:40Z
        assert parse_year(1_000_000_000.5) == 2001

    def test_unix_milliseconds(self):
        """Test ArcGIS style millisecond timestamps"""
        # 2020-09-13T12:26:40Z
        assert parse_year(1_600_000_000_000) == 2020
        assert parse_year("1600000000000") == 2020

    def test_eu_dotted(self):
        """Test dotted European dates"""
        assert parse_year("15.01.1999") == 1999

    @pytest.mark.parametrize("value", ["1399", "2101", 0, 9999, -5])
    def test_implausible_years_absent(self, value):
        """Test years outside [1400, 2100] are absent"""
        assert parse_year(value) is None

    @pytest.mark.parametrize("value", [None, "", "   ", True, float("nan"), "unknown"])
    def test_empty_and_garbage(self, value):
        """Test missing and unreadable values"""
        assert parse_year(value) is None

    def test_default_format_used_when_detection_fails(self):
        """Test the caller-supplied dialect decides for undetected text"""
        assert parse_year("1987 (approx)", default_format="iso") == 1987
        assert parse_year("approx 1987", default_format="us") == 1987
        assert parse_year("approx 1987", default_format="iso") is None


class TestIsPlausibleYear:
    """Tests for is_plausible_year"""

    def test_bounds_inclusive(self):
        """Test both bounds are accepted"""
        assert is_plausible_year(1400)
        assert is_plausible_year(2100)
        assert not is_plausible_year(None)
