"""
Unit tests for parcel, evidence and source configuration models
"""
import pytest
from pydantic import ValidationError

from src.parcelfusion.models.evidence import Confidence, DateEvidence, DateMethod
from src.parcelfusion.models.parcel import Geometry, LandUseCategory, NormalizedParcel
from src.parcelfusion.models.source_config import AdapterConfig, DistanceModelConfig, SourceDefinition


class TestGeometry:
    """Tests for the Geometry model"""

    def test_point(self):
        """Test points drop Z and become floats"""
        geometry = Geometry(type="Point", coordinates=[1, 2, 30])
        assert geometry.coordinates == [1.0, 2.0]
        assert geometry.representative_point() == (1.0, 2.0)

    def test_polygon_vertex_mean(self):
        """Test the outer ring mean excludes the closing vertex"""
        geometry = Geometry(type="Polygon", coordinates=[[[0, 0], [4, 0], [4, 2], [0, 2], [0, 0]]])
        assert geometry.representative_point() == (2.0, 1.0)

    def test_multipolygon_uses_first_member(self):
        """Test MultiPolygons are represented by their first polygon"""
        geometry = Geometry(type="MultiPolygon", coordinates=[
            [[[0, 0], [2, 0], [2, 2], [0, 2], [0, 0]]],
            [[[10, 10], [12, 10], [12, 12], [10, 10]]],
        ])
        assert geometry.representative_point() == (1.0, 1.0)
        assert len(geometry.positions()) == 9

    @pytest.mark.parametrize("geometry_type,coordinates", [
        ("Point", [1]),
        ("Point", [float("nan"), 1]),
        ("Point", [True, 1]),
        ("Polygon", []),
        ("Polygon", [[[0, 0], [1, 1]]]),
        ("MultiPolygon", []),
        ("LineString", [[0, 0], [1, 1]]),
    ])
    def test_invalid(self, geometry_type, coordinates):
        """Test malformed coordinates are rejected"""
        with pytest.raises(ValidationError):
            Geometry(type=geometry_type, coordinates=coordinates)


class TestNormalizedParcel:
    """Tests for NormalizedParcel"""

    def test_defaults(self):
        """Test optional fields and the default category"""
        parcel = NormalizedParcel(id=" P1 ", source_id="s", geometry=Geometry(type="Point", coordinates=[0, 0]))
        assert parcel.id == "P1"
        assert parcel.land_use_category == LandUseCategory.OTHER
        assert not parcel.has_known_year()

    def test_year_bounds(self):
        """Test years outside the building domain are rejected"""
        with pytest.raises(ValidationError):
            NormalizedParcel(id="P1", source_id="s", year_built=1200, geometry=Geometry(type="Point", coordinates=[0, 0]))

    def test_frozen(self):
        """Test parcels are immutable"""
        parcel = NormalizedParcel(id="P1", source_id="s", geometry=Geometry(type="Point", coordinates=[0, 0]))
        with pytest.raises(ValidationError):
            parcel.year_built = 1990


class TestDateEvidence:
    """Tests for DateEvidence"""

    def test_estimated_flag(self):
        """Test only exact evidence is unestimated"""
        assert not DateEvidence(year=1990, method=DateMethod.EXACT).estimated
        for method in (DateMethod.SPATIAL_JOIN, DateMethod.DISTANCE_MODEL, DateMethod.CATEGORY_MEDIAN):
            assert DateEvidence(year=1990, method=method).estimated

    def test_confidence_order(self):
        """Test confidence levels compare by rank"""
        assert Confidence.LOW < Confidence.MEDIUM < Confidence.HIGH

    def test_serialization(self):
        """Test the computed flag is serialized"""
        dumped = DateEvidence(year=1990, method=DateMethod.SPATIAL_JOIN).model_dump()
        assert dumped["estimated"] is True
        assert dumped["confidence"] == Confidence.LOW


class TestSourceConfig:
    """Tests for source configuration models"""

    def test_adapter_requires_location(self):
        """Test file adapters need a path and remote ones a url"""
        with pytest.raises(ValidationError):
            AdapterConfig(kind="file")
        with pytest.raises(ValidationError):
            AdapterConfig(kind="arcgis")

    def test_source_id_pattern(self):
        """Test ids must be usable as file prefixes"""
        with pytest.raises(ValidationError):
            SourceDefinition(source_id="Bad Id", name="x", adapter={"kind": "file", "path": "p"})

    def test_rings_ordered(self):
        """Test ring radii must increase"""
        with pytest.raises(ValidationError):
            DistanceModelConfig(
                centers=[{"name": "c", "lng": 0, "lat": 0}],
                rings=[{"max_km": 5, "start_year": 1960, "span": 10}, {"max_km": 2, "start_year": 1950, "span": 10}],
            )

    def test_resolve_path(self, tmp_path):
        """Test relative paths resolve under the raw data directory"""
        definition = SourceDefinition(source_id="x", name="x", adapter={"kind": "file", "path": "p"})
        assert definition.resolve_path(str(tmp_path / "a.geojson")) == tmp_path / "a.geojson"
        assert definition.resolve_path("clark/b.geojson").parts[-2:] == ("clark", "b.geojson")
