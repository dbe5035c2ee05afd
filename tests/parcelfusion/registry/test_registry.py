"""
Unit tests for the source registry
"""
import pytest

from src.parcelfusion.exceptions import ConfigurationError
from src.parcelfusion.models.parcel import LandUseCategory
from src.parcelfusion.registry.sources import SOURCE_REGISTRY, get_source, list_sources
from src.parcelfusion.transformers.schema_normalizer import NormalizerConfig, SchemaNormalizer


class TestRegistry:
    """Tests for registry lookups"""

    def test_known_sources(self):
        """Test every supported provider is registered"""
        assert list_sources() == [
            "campbell", "clark-county", "la-county", "livermore",
            "nyc-pluto", "palo-alto", "sf-urban", "solano",
        ]

    def test_get_source(self):
        """Test lookup by id"""
        source = get_source("solano")
        assert source.adapter.kind == "arcgis"
        assert source.adapter.where == "yrbuilt > 1800"
        assert source.normalization.field_mapping.city == ["sitecity"]

    def test_unknown_source(self):
        """Test unknown ids list the known ones"""
        with pytest.raises(ConfigurationError, match="campbell"):
            get_source("atlantis")

    def test_large_sources_stream_ndjson(self):
        """Test the biggest providers write line-delimited detail"""
        for source_id in ("la-county", "nyc-pluto", "clark-county"):
            assert SOURCE_REGISTRY[source_id].detail_format == "ndjson"

    def test_clark_county_dating(self):
        """Test Clark County carries every evidence source"""
        dating = get_source("clark-county").dating
        assert dating.exact_lookup.year_range == (2000, 2030)
        assert dating.boundaries.document_field == "Doc_Num"
        assert [c.name for c in dating.distance_model.centers] == ["downtown", "strip"]
        assert dating.distance_model.rings[-1].max_km is None

    @pytest.mark.parametrize("source_id", sorted(SOURCE_REGISTRY))
    def test_normalizer_builds(self, source_id):
        """Test every registered mapping yields a working normalizer"""
        source = get_source(source_id)
        normalizer = SchemaNormalizer(NormalizerConfig(
            source_id=source.source_id,
            field_mapping=source.normalization.field_mapping,
            source_crs=source.normalization.source_crs,
            area_unit=source.normalization.area_unit,
            land_use_mapping=dict(source.normalization.land_use_mapping),
        ))
        assert normalizer.config.source_id == source_id

    def test_pluto_codes(self):
        """Test PLUTO land-use codes map through the overrides"""
        source = get_source("nyc-pluto")
        normalizer = SchemaNormalizer(NormalizerConfig(
            source_id="nyc-pluto",
            field_mapping=source.normalization.field_mapping,
            land_use_mapping=dict(source.normalization.land_use_mapping),
        ))
        parcel = normalizer.normalize(
            {"bbl": "1000010010", "landuse": "05", "yearbuilt": "1931", "latitude": "40.70", "longitude": "-74.01"},
            0,
        )
        assert parcel.land_use_category == LandUseCategory.OFFICE
        assert parcel.year_built == 1931
