"""
Parcel Data Models

Pydantic models for the canonical parcel schema shared by every source.
"""
import math
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

Position = Tuple[float, float]


class LandUseCategory(str, Enum):
    """Closed set of land-use categories every parcel is mapped into."""

    SINGLE_FAMILY = "single_family"
    MULTI_FAMILY = "multi_family"
    RETAIL = "retail"
    OFFICE = "office"
    INDUSTRIAL = "industrial"
    HOTEL = "hotel"
    GOVERNMENT = "government"
    MIXED_USE = "mixed_use"
    VACANT = "vacant"
    OTHER = "other"


def _is_position(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) >= 2
        and all(isinstance(c, (int, float)) and not isinstance(c, bool) for c in value[:2])
        and all(math.isfinite(c) for c in value[:2])
    )


def _check_ring(ring: Any) -> List[List[float]]:
    if not isinstance(ring, (list, tuple)) or not all(_is_position(p) for p in ring):
        raise ValueError("ring must be a list of [x, y] positions")
    if len(ring) < 3:
        raise ValueError(f"ring has {len(ring)} positions, at least 3 required")
    return [[float(p[0]), float(p[1])] for p in ring]


def _check_polygon(polygon: Any) -> List[List[List[float]]]:
    if not isinstance(polygon, (list, tuple)) or not polygon:
        raise ValueError("polygon must be a non-empty list of rings")
    return [_check_ring(ring) for ring in polygon]


class Geometry(BaseModel):
    """
    GeoJSON geometry restricted to the shapes parcels arrive in.

    Coordinates are validated on construction and normalized to plain
    float lists (any Z value is dropped).
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["Point", "Polygon", "MultiPolygon"]
    coordinates: Any

    @model_validator(mode="after")
    def validate_coordinates(self) -> "Geometry":
        coords = self.coordinates
        if self.type == "Point":
            if not _is_position(coords):
                raise ValueError("Point coordinates must be [x, y]")
            normalized = [float(coords[0]), float(coords[1])]
        elif self.type == "Polygon":
            normalized = _check_polygon(coords)
        else:
            if not isinstance(coords, (list, tuple)) or not coords:
                raise ValueError("MultiPolygon must contain at least one polygon")
            normalized = [_check_polygon(polygon) for polygon in coords]
        object.__setattr__(self, "coordinates", normalized)
        return self

    def positions(self) -> List[Position]:
        """Flatten every vertex of the geometry."""
        if self.type == "Point":
            return [tuple(self.coordinates)]
        polygons = [self.coordinates] if self.type == "Polygon" else self.coordinates
        return [tuple(p) for polygon in polygons for ring in polygon for p in ring]

    def representative_point(self) -> Optional[Position]:
        """
        Point used for clustering and spatial joins.

        Points return themselves. Polygons return the vertex mean of the
        outer ring (closing vertex excluded); MultiPolygons use their first
        member, matching how the parcel layers are digitized.
        """
        if self.type == "Point":
            return (self.coordinates[0], self.coordinates[1])

        ring = self.coordinates[0] if self.type == "Polygon" else self.coordinates[0][0]
        if len(ring) > 1 and ring[0] == ring[-1]:
            ring = ring[:-1]
        if not ring:
            return None
        lng = sum(p[0] for p in ring) / len(ring)
        lat = sum(p[1] for p in ring) / len(ring)
        if not (math.isfinite(lng) and math.isfinite(lat)):
            return None
        return (lng, lat)

    def to_geojson(self) -> Dict[str, Any]:
        return {"type": self.type, "coordinates": self.coordinates}


class NormalizedParcel(BaseModel):
    """
    Canonical parcel record produced once per raw record by the normalizer.

    Attributes:
        id: Record identity, unique within its source
        source_id: Registry id of the providing source
        year_built: Construction year, when the source has a plausible one
        effective_year: Renovation / assessment year
        land_use_raw: Free-text use description as delivered
        land_use_category: Member of the closed category set, never null
        address: Street address
        city: City name
        area_sqm: Area converted to square meters
        stories: Story count
        units: Dwelling / unit count
        geometry: WGS84 geometry
        raw: The original record, kept for debugging and round trips
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(..., min_length=1, description="Record identity within the source")
    source_id: str = Field(..., description="Source registry id")
    year_built: Optional[int] = Field(None, ge=1400, le=2100, description="Construction year")
    effective_year: Optional[int] = Field(None, ge=1400, le=2100, description="Effective year")
    land_use_raw: str = Field("", description="Raw land-use text")
    land_use_category: LandUseCategory = Field(LandUseCategory.OTHER, description="Land-use category")
    address: Optional[str] = Field(None, description="Street address")
    city: Optional[str] = Field(None, description="City")
    area_sqm: Optional[float] = Field(None, ge=0, description="Area in square meters")
    stories: Optional[float] = Field(None, ge=0, description="Number of stories")
    units: Optional[int] = Field(None, ge=0, description="Number of units")
    geometry: Geometry
    raw: Dict[str, Any] = Field(default_factory=dict, description="Original record")

    def has_known_year(self) -> bool:
        """Check if the source supplied a usable construction year."""
        return self.year_built is not None

    def representative_point(self) -> Optional[Position]:
        return self.geometry.representative_point()
