"""
Coordinate Transformation Utilities

Projection registry and reprojection of parcel geometries into WGS84
lon/lat (EPSG:4326).
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError

from config.settings import settings
from src.parcelfusion.exceptions import ConfigurationError, UnregisteredCRSError
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

WGS84 = f"EPSG:{settings.wgs84_epsg}"

# Esri well-known ids that alias EPSG codes
ESRI_ALIASES = {"102100": "EPSG:3857", "102113": "EPSG:3857"}

# Common systems seen across the supported providers, as proj4 definitions
COMMON_PROJECTIONS: Dict[str, str] = {
    # WGS84
    "EPSG:4326": "+proj=longlat +datum=WGS84 +no_defs",
    # Web Mercator
    "EPSG:3857": (
        "+proj=merc +a=6378137 +b=6378137 +lat_ts=0 +lon_0=0 +x_0=0 +y_0=0 "
        "+k=1 +units=m +nadgrids=@null +no_defs"
    ),
    # British National Grid
    "EPSG:27700": (
        "+proj=tmerc +lat_0=49 +lon_0=-2 +k=0.9996012717 +x_0=400000 "
        "+y_0=-100000 +ellps=airy +datum=OSGB36 +units=m +no_defs"
    ),
    # NAD83 California Zone 3 (US feet)
    "EPSG:2227": (
        "+proj=lcc +lat_1=38.43333333333333 +lat_2=37.06666666666667 "
        "+lat_0=36.5 +lon_0=-120.5 +x_0=2000000 +y_0=500000.0000000002 "
        "+ellps=GRS80 +datum=NAD83 +to_meter=0.3048006096012192 +no_defs"
    ),
    # NAD83 UTM Zone 10N
    "EPSG:26910": "+proj=utm +zone=10 +datum=NAD83 +units=m +no_defs",
    # Australian GDA94
    "EPSG:4283": "+proj=longlat +ellps=GRS80 +no_defs",
    # Australian MGA Zone 55
    "EPSG:28355": "+proj=utm +zone=55 +south +ellps=GRS80 +units=m +no_defs",
    # Canadian NAD83 CSRS
    "EPSG:4617": "+proj=longlat +ellps=GRS80 +no_defs",
    # Ontario MTM Zone 10
    "EPSG:2019": (
        "+proj=tmerc +lat_0=0 +lon_0=-79.5 +k=0.9999 +x_0=304800 +y_0=0 "
        "+ellps=GRS80 +units=m +no_defs"
    ),
}


@dataclass(frozen=True)
class CRSGuess:
    """Result of magnitude-based CRS detection."""

    crs: str
    confidence: float


def normalize_crs_code(code: Any) -> str:
    """
    Canonicalize the ways providers spell a CRS.

    Accepts ``4326``, ``"4326"``, ``"epsg:4326"`` and OGC URNs such as
    ``urn:ogc:def:crs:EPSG::2227``. CRS84 is WGS84.
    """
    text = str(code).strip()
    upper = text.upper()
    if upper.endswith("CRS84"):
        return WGS84
    if upper.startswith("URN:OGC:DEF:CRS:EPSG:"):
        return "EPSG:" + upper.rsplit(":", 1)[-1]
    if upper.isdigit():
        return ESRI_ALIASES.get(upper, f"EPSG:{upper}")
    if upper.startswith("EPSG:"):
        return upper
    return text


class ProjectionRegistry:
    """
    Table of known projections plus a cache of pyproj transformers.

    The registry is a configuration object: each normalizer receives one at
    construction, so tests and sources can register systems without
    affecting each other.
    """

    def __init__(self, definitions: Optional[Mapping[str, str]] = None):
        source = COMMON_PROJECTIONS if definitions is None else definitions
        self._definitions: Dict[str, str] = {
            normalize_crs_code(code): definition for code, definition in source.items()
        }
        self._transformers: Dict[str, Transformer] = {}

    def register(self, code: Any, definition: str) -> None:
        """
        Register a projection definition (proj4 string, WKT or authority code).

        Raises:
            ConfigurationError: If pyproj cannot parse the definition
        """
        key = normalize_crs_code(code)
        try:
            CRS.from_user_input(definition)
        except CRSError as e:
            raise ConfigurationError(f"Invalid projection definition for {key}: {e}") from e

        self._definitions[key] = definition
        self._transformers.pop(key, None)
        logger.debug("projection_registered", crs=key)

    def is_registered(self, code: Any) -> bool:
        return normalize_crs_code(code) in self._definitions

    def codes(self) -> List[str]:
        return sorted(self._definitions)

    def transformer(self, code: Any) -> Optional[Transformer]:
        """
        Get the transformer from ``code`` to WGS84.

        Returns:
            Transformer, or None when ``code`` already is WGS84

        Raises:
            UnregisteredCRSError: If the code has no registered definition
        """
        key = normalize_crs_code(code)
        if key == WGS84:
            return None
        if key not in self._definitions:
            raise UnregisteredCRSError(key)

        if key not in self._transformers:
            self._transformers[key] = Transformer.from_crs(
                CRS.from_user_input(self._definitions[key]),
                WGS84,
                always_xy=True
            )
        return self._transformers[key]


class CoordinateTransformer:
    """
    Transforms coordinates from one registered CRS into WGS84.
    """

    def __init__(self, source_crs: Any = WGS84, registry: Optional[ProjectionRegistry] = None):
        """
        Initialize coordinate transformer.

        Args:
            source_crs: CRS code of the input coordinates
            registry: Projection registry (default: the common systems)

        Raises:
            UnregisteredCRSError: If source_crs is not registered
        """
        self.registry = registry or ProjectionRegistry()
        self.source_crs = normalize_crs_code(source_crs)
        self.transformer = self.registry.transformer(self.source_crs)

    @property
    def is_identity(self) -> bool:
        return self.transformer is None

    def transform_point(self, x: float, y: float) -> Tuple[float, float]:
        """
        Transform a single coordinate point.

        Args:
            x: Easting / longitude
            y: Northing / latitude

        Returns:
            Tuple of (longitude, latitude) in WGS84
        """
        if self.transformer is None:
            return x, y
        lon, lat = self.transformer.transform(x, y)
        return lon, lat

    def transform_ring(self, ring: List[List[float]]) -> List[List[float]]:
        if self.transformer is None or not ring:
            return ring
        xs = [p[0] for p in ring]
        ys = [p[1] for p in ring]
        lons, lats = self.transformer.transform(xs, ys)
        return [[float(lon), float(lat)] for lon, lat in zip(lons, lats)]

    def transform_geometry(self, geometry: Dict[str, Any]) -> Dict[str, Any]:
        """
        Reproject a GeoJSON Point / Polygon / MultiPolygon dict.

        Returns:
            New geometry dict in WGS84; the input is not modified
        """
        if self.transformer is None:
            return geometry

        geom_type = geometry.get("type")
        coords = geometry.get("coordinates")
        if geom_type == "Point":
            lon, lat = self.transform_point(coords[0], coords[1])
            new_coords: Any = [lon, lat]
        elif geom_type == "Polygon":
            new_coords = [self.transform_ring(ring) for ring in coords]
        elif geom_type == "MultiPolygon":
            new_coords = [[self.transform_ring(ring) for ring in polygon] for polygon in coords]
        else:
            return geometry
        return {"type": geom_type, "coordinates": new_coords}


def detect_crs(x: float, y: float) -> CRSGuess:
    """
    Guess the CRS of a coordinate pair from its magnitude.

    Only used to fill a missing CRS; a declared CRS is never overridden.

    Args:
        x: First coordinate (easting / longitude)
        y: Second coordinate (northing / latitude)

    Returns:
        CRSGuess with an EPSG code and a confidence in [0, 1]
    """
    # WGS84 longitude/latitude
    if -180 <= x <= 180 and -90 <= y <= 90:
        return CRSGuess(WGS84, 0.9)

    # Web Mercator
    if abs(x) > 1e6 and abs(y) > 1e6:
        return CRSGuess("EPSG:3857", 0.7)

    # British National Grid bounds
    if 0 < x < 700000 and 0 < y < 1300000:
        return CRSGuess("EPSG:27700", 0.6)

    # California state plane (feet)
    if 1e6 < x < 3e6 and 1e5 < y < 1e6:
        return CRSGuess("EPSG:2227", 0.5)

    return CRSGuess(WGS84, 0.3)


def reproject_geometry(
    geometry: Dict[str, Any],
    source_crs: Any,
    registry: Optional[ProjectionRegistry] = None
) -> Dict[str, Any]:
    """Reproject a GeoJSON geometry dict into WGS84."""
    return CoordinateTransformer(source_crs, registry).transform_geometry(geometry)
