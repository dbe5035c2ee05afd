"""
Unit tests for distance_model and statistics modules
"""
import random
from collections import Counter

import pytest

from src.parcelfusion.dating.distance_model import (
    DEFAULT_RINGS,
    ConcentricRingModel,
    HistoricalCenter,
    YearRing,
)
from src.parcelfusion.dating.statistics import YearStatistics, histogram_median
from src.parcelfusion.models.parcel import LandUseCategory


@pytest.fixture
def model():
    """Two-center model with the default rings and a fixed seed."""
    return ConcentricRingModel(
        centers=[HistoricalCenter("origin", 0.0, 0.0), HistoricalCenter("east", 1.0, 0.0)],
        rings=DEFAULT_RINGS,
        seed=42,
    )


class TestConcentricRingModel:
    """Tests for ConcentricRingModel"""

    def test_nearest_center(self, model):
        """Test the closest center is chosen"""
        center, distance = model.nearest_center((0.9, 0.0))
        assert center.name == "east"
        assert distance == pytest.approx(11.12, abs=0.01)

    def test_ring_boundaries(self, model):
        """Test ring radii are exclusive upper bounds"""
        assert model.ring_for(0.0).start_year == 1950
        assert model.ring_for(2.0).start_year == 1960
        assert model.ring_for(14.99).start_year == 1970
        assert model.ring_for(500.0).start_year == 2000

    def test_year_within_ring(self, model):
        """Test sampled years stay inside the ring's range"""
        for _ in range(50):
            year, provenance = model.estimate((0.01, 0.0))
            assert 1950 <= year <= 1969
            assert provenance == "origin:1.1km"

    def test_seed_reproducible(self):
        """Test the same seed gives the same sequence"""
        first = ConcentricRingModel([HistoricalCenter("c", 0, 0)], DEFAULT_RINGS, seed=7)
        second = ConcentricRingModel([HistoricalCenter("c", 0, 0)], DEFAULT_RINGS, seed=7)
        points = [(0.1 * i, 0.05 * i) for i in range(10)]
        assert [first.estimate(p) for p in points] == [second.estimate(p) for p in points]

    def test_injected_rng(self):
        """Test an explicit generator is used"""
        model = ConcentricRingModel([HistoricalCenter("c", 0, 0)], [YearRing(None, 1990, 1)], rng=random.Random(0))
        assert model.estimate((3.0, 3.0))[0] == 1990

    def test_no_centers_defers(self):
        """Test a model without centers returns None"""
        model = ConcentricRingModel([], DEFAULT_RINGS, seed=1)
        assert model.estimate((0, 0)) is None

    def test_requires_rings(self):
        """Test an empty ring table is rejected"""
        with pytest.raises(ValueError):
            ConcentricRingModel([HistoricalCenter("c", 0, 0)], [])


class TestHistogramMedian:
    """Tests for histogram_median"""

    def test_odd_count(self):
        """Test the middle year of an odd count"""
        assert histogram_median(Counter({1950: 1, 1960: 1, 1990: 1})) == 1960

    def test_even_count_rounds_half_up(self):
        """Test averaging the two middle years"""
        assert histogram_median(Counter({1950: 1, 1961: 1})) == 1956
        assert histogram_median(Counter({1960: 2, 1970: 2})) == 1965

    def test_weighted(self):
        """Test repeated years weigh in"""
        assert histogram_median(Counter({1920: 1, 2000: 5})) == 2000

    def test_empty(self):
        """Test an empty histogram has no median"""
        assert histogram_median(Counter()) is None


class TestYearStatistics:
    """Tests for YearStatistics"""

    def test_category_then_global_then_fallback(self):
        """Test the median fallback chain"""
        stats = YearStatistics(fallback_year=1950)
        assert stats.median_for(LandUseCategory.RETAIL) == (1950, "fallback")

        stats.add_year(LandUseCategory.SINGLE_FAMILY, 1980)
        stats.add_year(LandUseCategory.SINGLE_FAMILY, 1990)
        stats.add_year(LandUseCategory.OFFICE, 2010)

        assert stats.median_for(LandUseCategory.SINGLE_FAMILY) == (1985, "category:single_family")
        assert stats.median_for(LandUseCategory.RETAIL) == (1990, "global")
        assert stats.known_count == 3

    def test_medians_refresh_after_add(self):
        """Test cached medians are invalidated by new years"""
        stats = YearStatistics(fallback_year=1950)
        stats.add_year(LandUseCategory.OFFICE, 1970)
        assert stats.category_median(LandUseCategory.OFFICE) == 1970

        stats.add_year(LandUseCategory.OFFICE, 1990)
        stats.add_year(LandUseCategory.OFFICE, 1990)
        assert stats.category_median(LandUseCategory.OFFICE) == 1990
        assert stats.global_median() == 1990

    def test_summary(self):
        """Test summary lists category and global medians"""
        stats = YearStatistics(fallback_year=1950)
        stats.add_year(LandUseCategory.HOTEL, 1999)
        assert stats.summary() == {"hotel": 1999, "global": 1999}
