"""
Unit tests for data quality metrics
"""
import json

import pandas as pd
import pytest

from src.parcelfusion.monitoring.data_quality import (
    compute_detail_metrics,
    decade_histogram,
    load_detailed_properties,
)


@pytest.fixture
def properties():
    """Detailed properties of four parcels."""
    return [
        {"id": "1", "year": 1955, "estimated": False, "method": "exact", "confidence": "high",
         "use": "single_family", "address": "1 A St", "city": "X", "area": 100.0, "stories": 1, "units": 1},
        {"id": "2", "year": 1958, "estimated": True, "method": "spatial_join", "confidence": "medium",
         "use": "single_family", "address": None, "city": "X", "area": None, "stories": None, "units": None},
        {"id": "3", "year": 1971, "estimated": True, "method": "category_median", "confidence": "low",
         "use": "retail", "address": "3 C St", "city": None, "area": 50.0, "stories": 2, "units": None},
        {"id": "4", "year": 1979, "estimated": False, "method": "exact", "confidence": "high",
         "use": "retail", "address": "4 D St", "city": "X", "area": 75.0, "stories": 1, "units": 4},
    ]


class TestLoad:
    """Tests for load_detailed_properties"""

    def test_feature_collection(self, tmp_path, properties):
        """Test reading a FeatureCollection"""
        path = tmp_path / "d.geojson"
        path.write_text(json.dumps({
            "type": "FeatureCollection",
            "features": [{"type": "Feature", "properties": p, "geometry": None} for p in properties],
        }))
        df = load_detailed_properties(path)
        assert len(df) == 4
        assert list(df["id"]) == ["1", "2", "3", "4"]

    def test_ndjson(self, tmp_path, properties):
        """Test reading line-delimited features"""
        path = tmp_path / "d.ndjson"
        path.write_text("\n".join(json.dumps({"properties": p}) for p in properties) + "\n")
        assert len(load_detailed_properties(path)) == 4


class TestMetrics:
    """Tests for compute_detail_metrics and decade_histogram"""

    def test_metrics(self, properties):
        """Test method, category and completeness summaries"""
        metrics = compute_detail_metrics(pd.DataFrame(properties))

        assert metrics["total"] == 4
        assert metrics["estimated_share"] == 0.5
        assert metrics["methods"] == {"exact": 2, "spatial_join": 1, "category_median": 1}
        assert metrics["categories"] == {"single_family": 2, "retail": 2}
        assert metrics["years"] == {"min": 1955, "max": 1979, "median": 1964.5}
        assert metrics["median_year_by_method"]["exact"] == 1967.0
        assert metrics["completeness"]["address"] == 0.75
        assert metrics["completeness"]["units"] == 0.5

    def test_empty(self):
        """Test an empty frame"""
        assert compute_detail_metrics(pd.DataFrame())["total"] == 0
        assert decade_histogram(pd.DataFrame()) == []

    def test_decades(self, properties):
        """Test known and estimated counts per decade"""
        assert decade_histogram(pd.DataFrame(properties)) == [
            {"decade": 1950, "known": 1, "estimated": 1},
            {"decade": 1970, "known": 1, "estimated": 1},
        ]
