"""
Unit tests for address_standardizer module
"""
from src.parcelfusion.transformers.address_standardizer import (
    clean_address,
    join_address_parts,
    parse_address,
)


class TestParseAddress:
    """Tests for parse_address"""

    def test_us_address_with_city(self):
        """Test number, street and trailing city"""
        parsed = parse_address("123  Main St, Campbell")
        assert parsed.number == "123"
        assert parsed.street == "Main St"
        assert parsed.city == "Campbell"
        assert parsed.full == "123 Main St, Campbell"

    def test_us_address_without_city(self):
        """Test street-only addresses"""
        parsed = parse_address("123-125 Oak Avenue")
        assert parsed.number == "123-125"
        assert parsed.street == "Oak Avenue"
        assert parsed.city is None

    def test_uk_flat_prefix(self):
        """Test UK flat/unit prefixes"""
        parsed = parse_address("Flat 1, 12 High Street, Leeds")
        assert parsed.number == "12"
        assert parsed.street == "High Street"
        assert parsed.city == "Leeds"

    def test_unparseable_kept_as_street(self):
        """Test text without a number"""
        parsed = parse_address("Old Mill Farm")
        assert parsed.number is None
        assert parsed.street == "Old Mill Farm"

    def test_empty(self):
        """Test missing addresses"""
        assert parse_address(None).full == ""
        assert parse_address("  ").street is None


class TestJoinAddressParts:
    """Tests for join_address_parts"""

    def test_joins_present_parts(self):
        """Test number and street are joined with a space"""
        assert join_address_parts([123.0, "  Main   St "]) == "123 Main St"

    def test_skips_missing_parts(self):
        """Test None and blank parts are skipped"""
        assert join_address_parts([None, "Main St", ""]) == "Main St"
        assert join_address_parts([None, " "]) is None

    def test_clean_address(self):
        """Test whitespace collapsing"""
        assert clean_address(" 1   Elm\tSt ") == "1 Elm St"
