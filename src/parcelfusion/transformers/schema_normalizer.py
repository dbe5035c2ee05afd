"""
Schema Normalizer

Maps raw provider records (GeoJSON features, ArcGIS features or flat rows)
into the canonical NormalizedParcel schema: field resolution, year parsing,
land-use categorization, area conversion and reprojection to WGS84.
"""
import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from src.parcelfusion.exceptions import (
    ConfigurationError,
    MalformedDateError,
    MalformedGeometryError,
    MissingGeometryError,
    MissingIdentityError,
    RecordError,
    UnregisteredCRSError,
)
from src.parcelfusion.models.parcel import Geometry, LandUseCategory, NormalizedParcel
from src.parcelfusion.transformers.address_standardizer import join_address_parts, parse_address
from src.parcelfusion.transformers.coordinate_transformer import (
    WGS84,
    CoordinateTransformer,
    ProjectionRegistry,
    detect_crs,
    normalize_crs_code,
)
from src.parcelfusion.transformers.date_parser import DateFormat, parse_year
from src.parcelfusion.transformers.land_use import DEFAULT_LAND_USE_RULES, LandUseClassifier, LandUseRule
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

AreaUnit = Literal["sqft", "sqm", "acres", "hectares"]

# Multipliers to square meters
AREA_CONVERSIONS: Dict[str, float] = {
    "sqft": 0.092903,
    "sqm": 1.0,
    "acres": 4046.86,
    "hectares": 10000.0,
}

SUPPORTED_GEOMETRIES = ("Point", "Polygon", "MultiPolygon")


class FieldMapping(BaseModel):
    """
    Candidate raw field names for each canonical field.

    Each entry is tried in order; the first present, non-null, non-empty
    value wins. A single string is accepted in place of a list.
    """

    id: List[str] = Field(default_factory=list)
    year_built: List[str] = Field(default_factory=list)
    effective_year: List[str] = Field(default_factory=list)
    land_use: List[str] = Field(default_factory=list)
    address: List[str] = Field(default_factory=list)
    address_parts: List[str] = Field(default_factory=list, description="Parts joined with spaces")
    city: List[str] = Field(default_factory=list)
    area: List[str] = Field(default_factory=list)
    stories: List[str] = Field(default_factory=list)
    units: List[str] = Field(default_factory=list)
    crs: List[str] = Field(default_factory=list, description="Per-record CRS declaration")
    geometry: List[str] = Field(default_factory=lambda: ["geometry", "the_geom", "geom"])
    longitude: List[str] = Field(default_factory=list)
    latitude: List[str] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def as_candidate_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


@dataclass
class NormalizerConfig:
    """
    Per-source normalization settings.

    Attributes:
        source_id: Registry id of the source
        field_mapping: Candidate raw names per canonical field
        date_format: Dialect assumed when a date string is not auto-detected
        source_crs: CRS of the source geometries; None means WGS84 unless
            ``detect_missing_crs`` is set
        area_unit: Unit of the area field
        land_use_mapping: Exact-match land-use overrides, checked before rules
        rules: Ordered land-use rule table
        registry: Projection registry used for reprojection
        require_identity: Reject records without an id instead of
            synthesizing ``<source>_<index>``
        strict_dates: Reject records whose present year field is unparseable
        detect_missing_crs: Guess the CRS from coordinate magnitude when
            neither the source nor the record declares one
    """
    source_id: str
    field_mapping: FieldMapping = field(default_factory=FieldMapping)
    date_format: DateFormat = "iso"
    source_crs: Optional[str] = None
    area_unit: AreaUnit = "sqft"
    land_use_mapping: Dict[str, LandUseCategory] = field(default_factory=dict)
    rules: Sequence[LandUseRule] = DEFAULT_LAND_USE_RULES
    registry: Optional[ProjectionRegistry] = None
    require_identity: bool = False
    strict_dates: bool = False
    detect_missing_crs: bool = False


def is_empty(value: Any) -> bool:
    """Null, empty string, whitespace-only string or NaN."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float):
        return math.isnan(value)
    return False


def resolve_field(props: Mapping[str, Any], candidates: Sequence[str]) -> Any:
    """
    Get the first non-empty value among candidate field names.

    Args:
        props: Record attributes
        candidates: Raw field names, in priority order

    Returns:
        The value, or None when no candidate holds one
    """
    for name in candidates:
        value = props.get(name)
        if not is_empty(value):
            return value
    return None


def to_number(value: Any) -> Optional[float]:
    """Read a finite number from a raw value; commas are tolerated."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def _text(value: Any) -> Optional[str]:
    if is_empty(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _arcgis_geometry(geometry: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    if "x" in geometry and "y" in geometry:
        if geometry["x"] is None or geometry["y"] is None:
            return None
        return {"type": "Point", "coordinates": [geometry["x"], geometry["y"]]}
    rings = geometry.get("rings")
    if rings:
        # First ring is the shell, the rest are treated as its holes
        return {"type": "Polygon", "coordinates": rings}
    return None


def _spatial_reference(geometry: Mapping[str, Any]) -> Optional[Any]:
    ref = geometry.get("spatialReference") or {}
    return ref.get("latestWkid") or ref.get("wkid")


def _geojson_crs(member: Any) -> Optional[str]:
    if isinstance(member, Mapping):
        name = (member.get("properties") or {}).get("name")
        return name or None
    if isinstance(member, str):
        return member or None
    return None


class SchemaNormalizer:
    """
    Normalizes one source's raw records into NormalizedParcel objects.
    """

    def __init__(self, config: NormalizerConfig):
        """
        Initialize normalizer.

        Args:
            config: Source normalization settings

        Raises:
            ConfigurationError: If the source CRS is not registered or the
                area unit is unknown
        """
        self.config = config
        self.mapping = config.field_mapping
        self.registry = config.registry or ProjectionRegistry()
        self.classifier = LandUseClassifier(config.rules, config.land_use_mapping)

        if config.area_unit not in AREA_CONVERSIONS:
            raise ConfigurationError(f"Unknown area unit: {config.area_unit}")
        self.area_factor = AREA_CONVERSIONS[config.area_unit]

        self._transformers: Dict[str, CoordinateTransformer] = {}
        self.source_crs = normalize_crs_code(config.source_crs) if config.source_crs else None
        if self.source_crs:
            try:
                self._transformer_for(self.source_crs)
            except UnregisteredCRSError as e:
                raise ConfigurationError(
                    f"Source {config.source_id} declares unregistered CRS {e.crs}"
                ) from e

        logger.info(
            "schema_normalizer_initialized",
            source_id=config.source_id,
            source_crs=self.source_crs or WGS84,
            area_unit=config.area_unit,
            overrides=len(config.land_use_mapping)
        )

    def _transformer_for(self, crs: str) -> CoordinateTransformer:
        if crs not in self._transformers:
            self._transformers[crs] = CoordinateTransformer(crs, self.registry)
        return self._transformers[crs]

    def _unpack(self, raw: Mapping[str, Any]) -> Tuple[Mapping[str, Any], Optional[Any], Optional[Any]]:
        """Split a raw record into (attributes, geometry dict, declared CRS)."""
        if raw.get("type") == "Feature" or "properties" in raw:
            props = raw.get("properties") or {}
            declared = resolve_field(props, self.mapping.crs) or _geojson_crs(raw.get("crs"))
            return props, raw.get("geometry"), declared

        if "attributes" in raw:
            props = raw.get("attributes") or {}
            esri = raw.get("geometry")
            geometry = _arcgis_geometry(esri) if isinstance(esri, Mapping) else None
            declared = resolve_field(props, self.mapping.crs)
            if declared is None and isinstance(esri, Mapping):
                declared = _spatial_reference(esri)
            return props, geometry, declared

        geometry = resolve_field(raw, self.mapping.geometry)
        if geometry is None and self.mapping.longitude and self.mapping.latitude:
            lng = to_number(resolve_field(raw, self.mapping.longitude))
            lat = to_number(resolve_field(raw, self.mapping.latitude))
            if lng is not None and lat is not None:
                geometry = {"type": "Point", "coordinates": [lng, lat]}
        return raw, geometry, resolve_field(raw, self.mapping.crs)

    def _geometry(self, geometry: Any, declared_crs: Any, record_id: str) -> Geometry:
        if geometry is None:
            raise MissingGeometryError("Record has no geometry", record_id=record_id)
        if isinstance(geometry, str):
            try:
                geometry = json.loads(geometry)
            except ValueError as e:
                raise MalformedGeometryError(f"Unparseable geometry text: {e}", record_id=record_id)
        if not isinstance(geometry, Mapping):
            raise MalformedGeometryError("Geometry is not an object", record_id=record_id)
        if geometry.get("type") not in SUPPORTED_GEOMETRIES:
            raise MalformedGeometryError(
                f"Unsupported geometry type: {geometry.get('type')}", record_id=record_id
            )

        try:
            parsed = Geometry(type=geometry["type"], coordinates=geometry.get("coordinates"))
        except ValidationError as e:
            raise MalformedGeometryError(str(e.errors()[0]["msg"]), record_id=record_id)

        if declared_crs is not None:
            crs = normalize_crs_code(declared_crs)
            if not self.registry.is_registered(crs):
                raise UnregisteredCRSError(crs, record_id=record_id)
        elif self.source_crs:
            crs = self.source_crs
        elif self.config.detect_missing_crs:
            x, y = parsed.positions()[0]
            guess = detect_crs(x, y)
            crs = guess.crs
            logger.debug(
                "crs_detected",
                record_id=record_id,
                crs=crs,
                confidence=guess.confidence
            )
        else:
            crs = WGS84

        transformer = self._transformer_for(crs)
        if transformer.is_identity:
            return parsed

        try:
            return Geometry(**transformer.transform_geometry(parsed.to_geojson()))
        except ValidationError as e:
            raise MalformedGeometryError(
                f"Reprojection from {crs} produced invalid coordinates: {e.errors()[0]['msg']}",
                record_id=record_id
            )

    def _year(self, props: Mapping[str, Any], candidates: Sequence[str], record_id: str) -> Optional[int]:
        raw_value = resolve_field(props, candidates)
        year = parse_year(raw_value, self.config.date_format)
        if year is None and raw_value is not None and self.config.strict_dates:
            raise MalformedDateError(f"Unparseable year value: {raw_value!r}", record_id=record_id)
        return year

    def year_sample(self, raw: Mapping[str, Any]) -> Optional[Tuple[LandUseCategory, int]]:
        """
        Category and source year of a raw record, without building geometry.

        Used by the statistics pass; unparseable years count as unknown.
        """
        props, _, _ = self._unpack(raw)
        year = parse_year(resolve_field(props, self.mapping.year_built), self.config.date_format)
        if year is None:
            return None
        land_use = _text(resolve_field(props, self.mapping.land_use)) or ""
        return self.classifier.categorize(land_use), year

    def normalize(self, raw: Mapping[str, Any], index: int) -> NormalizedParcel:
        """
        Normalize one raw record.

        Args:
            raw: Raw provider record
            index: Position of the record in its source, used for synthesized ids

        Returns:
            NormalizedParcel

        Raises:
            RecordError: A subclass naming why this record was rejected
        """
        props, geometry, declared_crs = self._unpack(raw)

        id_value = _text(resolve_field(props, self.mapping.id))
        if id_value is None:
            if self.config.require_identity:
                raise MissingIdentityError(f"Record {index} has no identity")
            id_value = f"{self.config.source_id}_{index}"

        parsed_geometry = self._geometry(geometry, declared_crs, id_value)

        year_built = self._year(props, self.mapping.year_built, id_value)
        effective_year = self._year(props, self.mapping.effective_year, id_value)

        land_use_raw = _text(resolve_field(props, self.mapping.land_use)) or ""
        category = self.classifier.categorize(land_use_raw)

        address = _text(resolve_field(props, self.mapping.address))
        if address is None and self.mapping.address_parts:
            address = join_address_parts(props.get(name) for name in self.mapping.address_parts)

        city = _text(resolve_field(props, self.mapping.city))
        if city is None and address:
            city = parse_address(address).city

        area = to_number(resolve_field(props, self.mapping.area))
        area_sqm = area * self.area_factor if area is not None and area >= 0 else None

        stories = to_number(resolve_field(props, self.mapping.stories))
        if stories is not None and stories < 0:
            stories = None

        units = to_number(resolve_field(props, self.mapping.units))
        units = int(units) if units is not None and units >= 0 else None

        return NormalizedParcel(
            id=id_value,
            source_id=self.config.source_id,
            year_built=year_built,
            effective_year=effective_year,
            land_use_raw=land_use_raw,
            land_use_category=category,
            address=address,
            city=city,
            area_sqm=area_sqm,
            stories=stories,
            units=units,
            geometry=parsed_geometry,
            raw=dict(raw),
        )

    def normalize_batch(
        self,
        records: Iterable[Mapping[str, Any]],
        start_index: int = 0
    ) -> Tuple[List[NormalizedParcel], List[RecordError]]:
        """
        Normalize many records; a failing record never affects its siblings.

        Returns:
            Tuple of (parcels, per-record errors)
        """
        parcels: List[NormalizedParcel] = []
        errors: List[RecordError] = []
        for offset, raw in enumerate(records):
            try:
                parcels.append(self.normalize(raw, start_index + offset))
            except RecordError as e:
                logger.debug("record_rejected", reason=e.reason, record_id=e.record_id, error=str(e))
                errors.append(e)
        return parcels, errors
