"""
Unit tests for dated boundaries and lookup loaders
"""
import json

import pytest

from src.parcelfusion.dating.boundaries import (
    Boundary,
    BoundarySet,
    SerialInterpolation,
    load_boundary_set,
    load_exact_lookup,
    parse_document_year,
)
from src.parcelfusion.exceptions import ConfigurationError
from src.parcelfusion.geo.containment import build_checker


def square(x0, y0, size=1.0):
    return {
        "type": "Polygon",
        "coordinates": [[[x0, y0], [x0 + size, y0], [x0 + size, y0 + size], [x0, y0 + size], [x0, y0]]],
    }


@pytest.fixture
def boundary_file(tmp_path):
    """Subdivision file with document-dated, interpolated and unusable features."""
    path = tmp_path / "subdivisions.geojson"
    path.write_text(json.dumps({
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"SubName": "Desert Shores", "Doc_Num": "19890412001234"},
             "geometry": square(0, 0)},
            {"type": "Feature", "properties": {"SubName": "Old Town", "Doc_Num": None, "Map_Book": "3"},
             "geometry": square(0.5, 0.5)},
            {"type": "Feature", "properties": {"SubName": "No Date", "Map_Book": "PB"},
             "geometry": square(5, 5)},
            {"type": "Feature", "properties": {"SubName": "No Shape", "Doc_Num": "20010101"},
             "geometry": None},
            {"type": "Feature", "properties": {"SubName": "Sliver", "Doc_Num": "20010101"},
             "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [0, 0]]]}},
        ],
    }))
    return path


class TestParseDocumentYear:
    """Tests for parse_document_year"""

    def test_document_serial(self):
        """Test the YYYYMMDD prefix is read"""
        assert parse_document_year("2016072000954") == 2016
        assert parse_document_year(19890412001234) == 1989

    def test_not_a_date(self):
        """Test serials without a valid date prefix"""
        assert parse_document_year("20161399") is None
        assert parse_document_year("18991231") is None
        assert parse_document_year("BK-12") is None
        assert parse_document_year(None) is None


class TestSerialInterpolation:
    """Tests for SerialInterpolation"""

    def test_map_book_scheme(self):
        """Test the first and last map books"""
        interpolation = SerialInterpolation()
        assert interpolation.estimate("1") == 1956
        assert interpolation.estimate(176) == 2025

    def test_suffix_and_clamp(self):
        """Test alphanumeric serials and clamping"""
        interpolation = SerialInterpolation()
        assert interpolation.estimate("12A") == 1960
        assert interpolation.estimate("900") == 2025

    def test_sentinels(self):
        """Test placeholder serials have no year"""
        interpolation = SerialInterpolation()
        assert interpolation.estimate("PB") is None
        assert interpolation.estimate("") is None
        assert interpolation.estimate("0") is None


class TestBoundarySet:
    """Tests for BoundarySet"""

    def test_first_containing_boundary_wins(self):
        """Test overlapping boundaries resolve in insertion order"""
        boundaries = BoundarySet([
            Boundary("first", 1970, "document", build_checker(square(0, 0, 2))),
            Boundary("second", 1990, "document", build_checker(square(1, 1, 2))),
        ])
        assert boundaries.find((1.5, 1.5)).name == "first"
        assert boundaries.find((2.5, 2.5)).name == "second"
        assert boundaries.find((9, 9)) is None
        assert len(boundaries) == 2

    def test_ray_casts_summed(self):
        """Test the ray cast counter covers every boundary"""
        boundaries = BoundarySet([
            Boundary("a", 1970, "document", build_checker(square(0, 0))),
            Boundary("b", 1980, "document", build_checker(square(10, 10))),
        ])
        boundaries.find((0.5, 0.5))
        boundaries.find((10.5, 10.5))
        assert boundaries.ray_casts == 2


class TestLoadBoundarySet:
    """Tests for load_boundary_set"""

    def test_loads_dated_polygons(self, boundary_file):
        """Test document dates win and the map book fills gaps"""
        boundaries = load_boundary_set(
            boundary_file,
            name_field="SubName",
            document_field="Doc_Num",
            serial_field="Map_Book",
        )

        loaded = {b.name: b for b in boundaries}
        assert set(loaded) == {"Desert Shores", "Old Town"}
        assert loaded["Desert Shores"].year == 1989
        assert loaded["Desert Shores"].dated_by == "document"
        assert loaded["Old Town"].year == 1957
        assert loaded["Old Town"].dated_by == "interpolated"

    def test_year_field(self, tmp_path):
        """Test plain year properties and generated names"""
        path = tmp_path / "zones.geojson"
        path.write_text(json.dumps([
            {"type": "Feature", "properties": {"built": "1965"}, "geometry": square(0, 0)},
        ]))
        boundaries = load_boundary_set(path, year_field="built")
        assert [(b.name, b.year) for b in boundaries] == [("boundary_0", 1965)]

    def test_missing_file(self, tmp_path):
        """Test a missing boundary file is a configuration error"""
        with pytest.raises(ConfigurationError):
            load_boundary_set(tmp_path / "missing.geojson")


class TestLoadExactLookup:
    """Tests for load_exact_lookup"""

    def test_feature_collection(self, tmp_path):
        """Test ids map to parsed years, including epoch milliseconds"""
        path = tmp_path / "added.geojson"
        path.write_text(json.dumps({"features": [
            {"properties": {"apn": "138-01-101-001", "add_dt": 1262347200000}},
            {"properties": {"apn": " 138-01-101-002 ", "add_dt": "2015-06-01"}},
            {"properties": {"apn": "", "add_dt": "2015-06-01"}},
            {"properties": {"apn": "138-01-101-003", "add_dt": None}},
        ]}))

        lookup = load_exact_lookup(path, "apn", "add_dt")

        assert lookup == {"138-01-101-001": 2010, "138-01-101-002": 2015}

    def test_year_range(self, tmp_path):
        """Test years outside the range are ignored"""
        path = tmp_path / "added.json"
        path.write_text(json.dumps([
            {"apn": "A", "add_dt": "1985"},
            {"apn": "B", "add_dt": "2005"},
        ]))
        assert load_exact_lookup(path, "apn", "add_dt", year_range=(2000, 2030)) == {"B": 2005}

    def test_unreadable_file(self, tmp_path):
        """Test invalid JSON is a configuration error"""
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError):
            load_exact_lookup(path, "apn", "add_dt")
