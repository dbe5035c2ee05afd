"""
Unit tests for land_use module
"""
import pytest

from src.parcelfusion.models.parcel import LandUseCategory
from src.parcelfusion.transformers.land_use import (
    CATEGORY_COLORS,
    CATEGORY_LABELS,
    DEFAULT_LAND_USE_RULES,
    LandUseClassifier,
    LandUseRule,
    categorize_land_use,
    category_color,
    category_label,
)


class TestCategorizeLandUse:
    """Tests for the default rule table"""

    @pytest.mark.parametrize("text,expected", [
        ("Single Family Residential", LandUseCategory.SINGLE_FAMILY),
        ("SFR", LandUseCategory.SINGLE_FAMILY),
        ("Apartment 5+ units", LandUseCategory.MULTI_FAMILY),
        ("CONDOMINIUM", LandUseCategory.MULTI_FAMILY),
        ("Retail Store", LandUseCategory.RETAIL),
        ("Professional Office", LandUseCategory.OFFICE),
        ("Warehouse", LandUseCategory.INDUSTRIAL),
        ("Motel", LandUseCategory.HOTEL),
        ("Public School", LandUseCategory.GOVERNMENT),
        ("Mixed Use", LandUseCategory.MIXED_USE),
        ("Vacant Land", LandUseCategory.VACANT),
    ])
    def test_known_descriptions(self, text, expected):
        """Test typical provider descriptions"""
        assert categorize_land_use(text) == expected

    def test_first_rule_wins(self):
        """Test rule order breaks ties between matching rules"""
        # Matches both retail and mixed use; retail comes first
        assert categorize_land_use("Residential / Commercial Retail") == LandUseCategory.RETAIL

    @pytest.mark.parametrize("text", [None, "", "   ", "Quarry", "zzz", "0"])
    def test_unmatched_is_other(self, text):
        """Test the function is total: unmatched text maps to other"""
        assert categorize_land_use(text) == LandUseCategory.OTHER

    def test_deterministic(self):
        """Test repeated calls agree"""
        results = {categorize_land_use("Light Industrial / Office") for _ in range(10)}
        assert len(results) == 1

    def test_default_rule_order(self):
        """Test the default table order"""
        assert [rule.category for rule in DEFAULT_LAND_USE_RULES] == [
            LandUseCategory.SINGLE_FAMILY,
            LandUseCategory.MULTI_FAMILY,
            LandUseCategory.RETAIL,
            LandUseCategory.OFFICE,
            LandUseCategory.INDUSTRIAL,
            LandUseCategory.HOTEL,
            LandUseCategory.GOVERNMENT,
            LandUseCategory.MIXED_USE,
            LandUseCategory.VACANT,
        ]


class TestLandUseClassifier:
    """Tests for LandUseClassifier"""

    def test_overrides_checked_first(self):
        """Test exact-match overrides beat the rules"""
        classifier = LandUseClassifier(overrides={"1": LandUseCategory.RETAIL, "Office": "hotel"})
        assert classifier.categorize("1") == LandUseCategory.RETAIL
        assert classifier.categorize("Office") == LandUseCategory.HOTEL
        assert classifier.categorize("Office Building") == LandUseCategory.OFFICE

    def test_custom_rules(self):
        """Test a source-specific rule table"""
        rules = [LandUseRule.from_strings(LandUseCategory.VACANT, [r"^V\d"])]
        classifier = LandUseClassifier(rules=rules)
        assert classifier.categorize("v1") == LandUseCategory.VACANT
        assert classifier.categorize("Single Family") == LandUseCategory.OTHER


class TestPalette:
    """Tests for category colors and labels"""

    def test_every_category_has_color_and_label(self):
        """Test the palette covers the closed set"""
        for category in LandUseCategory:
            assert category in CATEGORY_COLORS
            assert category in CATEGORY_LABELS

    def test_lookup_helpers(self):
        """Test color and label helpers"""
        assert category_color(LandUseCategory.RETAIL) == "#e74c3c"
        assert category_label(LandUseCategory.MIXED_USE) == "Mixed-Use"
