"""
Source Configuration Models

Pydantic models describing one provider: how to fetch it, how to map its
fields, how to date and cluster its parcels.
"""
from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from config.settings import settings
from src.parcelfusion.models.parcel import LandUseCategory
from src.parcelfusion.transformers.schema_normalizer import FieldMapping


class AdapterConfig(BaseModel):
    """
    Where records come from.

    ``arcgis`` and ``socrata`` page through a provider API; ``file`` reads a
    local GeoJSON FeatureCollection or newline-delimited GeoJSON file.
    """

    kind: Literal["arcgis", "socrata", "file"]
    url: Optional[str] = Field(None, description="Query / resource URL")
    path: Optional[str] = Field(None, description="Local file for kind=file")
    out_fields: List[str] = Field(default_factory=lambda: ["*"], description="ArcGIS outFields")
    fields: List[str] = Field(default_factory=list, description="Socrata $select fields")
    where: Optional[str] = Field(None, description="Server-side filter")
    out_sr: int = Field(4326, description="ArcGIS output wkid")
    response_format: Literal["geojson", "json"] = "geojson"

    @model_validator(mode="after")
    def check_location(self) -> "AdapterConfig":
        if self.kind == "file" and not self.path:
            raise ValueError("file adapter requires a path")
        if self.kind != "file" and not self.url:
            raise ValueError(f"{self.kind} adapter requires a url")
        return self


class NormalizationConfig(BaseModel):
    field_mapping: FieldMapping = Field(default_factory=FieldMapping)
    date_format: Literal["iso", "us", "eu", "year_only"] = "iso"
    source_crs: Optional[str] = None
    area_unit: Literal["sqft", "sqm", "acres", "hectares"] = "sqft"
    land_use_mapping: Dict[str, LandUseCategory] = Field(default_factory=dict)
    require_identity: bool = False
    strict_dates: bool = False
    detect_missing_crs: bool = False


class ClusteringConfig(BaseModel):
    grid_size: float = Field(default_factory=lambda: settings.default_grid_size, gt=0)
    block_separator: str = "-"
    block_segments: int = Field(2, ge=1)
    block_prefix_length: int = Field(6, ge=1)
    measure: Literal["area", "units"] = "area"


class BoundaryConfig(BaseModel):
    """Dated boundary file plus how to read a year from each feature."""

    path: str
    name_field: Optional[str] = None
    year_field: Optional[str] = None
    document_field: Optional[str] = None
    serial_field: Optional[str] = None
    first_serial: int = 1
    first_year: int = 1956
    years_per_serial: float = 0.394
    min_year: int = 1956
    max_year: int = 2025
    serial_sentinels: List[str] = Field(default_factory=lambda: ["PB"])


class LookupConfig(BaseModel):
    path: str
    id_field: str
    date_field: str
    year_range: Optional[Tuple[int, int]] = None


class CenterConfig(BaseModel):
    name: str
    lng: float = Field(..., ge=-180, le=180)
    lat: float = Field(..., ge=-90, le=90)


class RingConfig(BaseModel):
    max_km: Optional[float] = Field(None, gt=0)
    start_year: int
    span: int = Field(..., ge=1)


class DistanceModelConfig(BaseModel):
    centers: List[CenterConfig]
    rings: List[RingConfig]

    @field_validator("rings")
    @classmethod
    def rings_increase(cls, v: List[RingConfig]) -> List[RingConfig]:
        bounded = [r.max_km for r in v if r.max_km is not None]
        if bounded != sorted(bounded):
            raise ValueError("rings must be ordered by increasing radius")
        return v


class DatingConfig(BaseModel):
    trust_source_years: bool = True
    boundaries: Optional[BoundaryConfig] = None
    exact_lookup: Optional[LookupConfig] = None
    distance_model: Optional[DistanceModelConfig] = None
    fallback_year: int = Field(default_factory=lambda: settings.fallback_year)


class SourceDefinition(BaseModel):
    """
    Everything needed to run the pipeline for one source.

    Attributes:
        source_id: Registry id, also the output file prefix
        name: Display name
        adapter: Fetch configuration
        normalization: Field mapping and parsing options
        dating: Evidence for the date waterfall
        clustering: Aggregation density
        expected_count: Approximate record count, used to choose streaming
            when the provider cannot count
        detail_format: Detailed output as a FeatureCollection or NDJSON
        tolerate_page_failures: Keep going when a page exhausts its retries
    """

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(..., min_length=1, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    name: str
    adapter: AdapterConfig
    normalization: NormalizationConfig = Field(default_factory=NormalizationConfig)
    dating: DatingConfig = Field(default_factory=DatingConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    expected_count: Optional[int] = Field(None, ge=0)
    detail_format: Literal["geojson", "ndjson"] = "geojson"
    tolerate_page_failures: bool = False

    def resolve_path(self, path: str) -> Path:
        """Relative data paths live under the raw data directory."""
        candidate = Path(path)
        return candidate if candidate.is_absolute() else Path(settings.raw_data_dir) / candidate
