"""
Dated Boundaries

Historical polygons (subdivision plats, development zones, ...) that attach
an inferred construction year to every parcel inside them, plus loaders for
boundary files and exact id -> year lookup files.
"""
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from src.parcelfusion.exceptions import ConfigurationError, MalformedGeometryError
from src.parcelfusion.geo.containment import ContainmentChecker, build_checker
from src.parcelfusion.models.parcel import Position
from src.parcelfusion.transformers.date_parser import parse_year
from src.parcelfusion.utils.geo_utils import round_half_up
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

# YYYYMMDD prefix of a recorded-document serial, e.g. "2016072000954"
_DOCUMENT_DATE = re.compile(r"^(19\d{2}|20\d{2})(\d{2})(\d{2})")

DOCUMENT_YEAR_RANGE = (1900, 2030)


def parse_document_year(serial: Any, year_range: Tuple[int, int] = DOCUMENT_YEAR_RANGE) -> Optional[int]:
    """
    Read the recording year from a document number.

    Args:
        serial: Document number starting with YYYYMMDD
        year_range: Inclusive bounds a year must fall in

    Returns:
        Year, or None when the prefix is not a date
    """
    if serial is None:
        return None
    match = _DOCUMENT_DATE.match(str(serial).strip())
    if not match:
        return None

    year, month = int(match.group(1)), int(match.group(2))
    if year_range[0] <= year <= year_range[1] and 1 <= month <= 12:
        return year
    return None


@dataclass(frozen=True)
class SerialInterpolation:
    """
    Linear year estimate from a sequential record-numbering scheme.

    Defaults describe the county plat map books: book 1 is 1956 and book 176
    is 2025, about 0.394 years per book.
    """

    first_serial: int = 1
    first_year: int = 1956
    years_per_serial: float = 0.394
    min_year: int = 1956
    max_year: int = 2025
    sentinels: Tuple[str, ...] = ("PB",)

    def estimate(self, serial: Any) -> Optional[int]:
        if serial is None:
            return None
        text = str(serial).strip()
        if not text or text in self.sentinels:
            return None

        match = re.match(r"^\d+", text)
        if not match:
            return None
        number = int(match.group(0))
        if number < self.first_serial:
            return None

        year = round_half_up(self.first_year + (number - self.first_serial) * self.years_per_serial)
        return max(self.min_year, min(self.max_year, year))


@dataclass
class Boundary:
    """
    Named dated polygon.

    Attributes:
        name: Display / provenance name
        year: Year attached to contained parcels
        dated_by: "document" when read from a document serial,
            "interpolated" when estimated from a numbering scheme
        checker: Containment checker with the precomputed bbox
    """
    name: str
    year: int
    dated_by: str
    checker: ContainmentChecker = field(repr=False)

    def contains(self, point: Position) -> bool:
        return self.checker.contains(point)


class BoundarySet:
    """
    Ordered boundaries; the first containing boundary answers a query.

    Iteration order is the order boundaries were added (file order), so
    overlapping boundaries resolve the same way on every run.
    """

    def __init__(self, boundaries: Optional[Sequence[Boundary]] = None):
        self.boundaries: List[Boundary] = list(boundaries or [])

    def add(self, boundary: Boundary) -> None:
        self.boundaries.append(boundary)

    def find(self, point: Position) -> Optional[Boundary]:
        for boundary in self.boundaries:
            if boundary.contains(point):
                return boundary
        return None

    @property
    def ray_casts(self) -> int:
        return sum(b.checker.ray_casts for b in self.boundaries)

    def __iter__(self) -> Iterator[Boundary]:
        return iter(self.boundaries)

    def __len__(self) -> int:
        return len(self.boundaries)


def _read_json(path: Union[str, Path], what: str) -> Any:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot read {what} file {path}: {e}") from e


def _features(payload: Any) -> List[Mapping[str, Any]]:
    if isinstance(payload, Mapping):
        return list(payload.get("features") or [])
    if isinstance(payload, list):
        return payload
    return []


def load_boundary_set(
    path: Union[str, Path],
    name_field: Optional[str] = None,
    document_field: Optional[str] = None,
    serial_field: Optional[str] = None,
    interpolation: Optional[SerialInterpolation] = None,
    year_field: Optional[str] = None
) -> BoundarySet:
    """
    Load dated boundaries from a GeoJSON FeatureCollection.

    A feature's year comes from ``year_field`` when given, else from the
    document serial, else from the interpolated record number. Features
    with no derivable year or no polygonal geometry are dropped.

    Args:
        path: GeoJSON file
        name_field: Property holding the boundary name
        document_field: Property holding a YYYYMMDD-prefixed document number
        serial_field: Property holding the sequential record number
        interpolation: Serial-to-year model (default: map book scheme)
        year_field: Property holding a plain year

    Returns:
        BoundarySet in file order

    Raises:
        ConfigurationError: If the file is missing or unreadable
    """
    interpolation = interpolation or SerialInterpolation()
    features = _features(_read_json(path, "boundary"))

    boundaries = BoundarySet()
    undated = 0
    malformed = 0
    dated_by_document = 0

    for index, feature in enumerate(features):
        props = feature.get("properties") or {}
        geometry = feature.get("geometry")
        if not geometry:
            malformed += 1
            continue

        year = None
        dated_by = "document"
        if year_field:
            year = parse_year(props.get(year_field))
        if year is None and document_field:
            year = parse_document_year(props.get(document_field))
        if year is None and serial_field:
            year = interpolation.estimate(props.get(serial_field))
            dated_by = "interpolated"
        if year is None:
            undated += 1
            continue

        try:
            checker = build_checker(geometry)
        except MalformedGeometryError:
            malformed += 1
            continue

        name = props.get(name_field) if name_field else None
        if dated_by == "document":
            dated_by_document += 1
        boundaries.add(Boundary(
            name=str(name) if name else f"boundary_{index}",
            year=year,
            dated_by=dated_by,
            checker=checker,
        ))

    logger.info(
        "boundaries_loaded",
        path=str(path),
        total=len(features),
        loaded=len(boundaries),
        document_dated=dated_by_document,
        interpolated=len(boundaries) - dated_by_document,
        undated_dropped=undated,
        malformed_dropped=malformed
    )
    return boundaries


def load_exact_lookup(
    path: Union[str, Path],
    id_field: str,
    date_field: str,
    year_range: Optional[Tuple[int, int]] = None
) -> Dict[str, int]:
    """
    Load an authoritative id -> year table.

    Accepts a GeoJSON FeatureCollection or a JSON list of flat objects.
    Date values are parsed like any other year field, so epoch
    milliseconds (e.g. ArcGIS date fields) are read as timestamps.

    Args:
        path: JSON / GeoJSON file
        id_field: Property holding the parcel id
        date_field: Property holding the date or year
        year_range: Optional inclusive bounds; years outside are ignored

    Returns:
        Mapping of parcel id to year

    Raises:
        ConfigurationError: If the file is missing or unreadable
    """
    lookup: Dict[str, int] = {}
    rows = _features(_read_json(path, "lookup"))

    for row in rows:
        props = row.get("properties", row) if isinstance(row, Mapping) else {}
        record_id = props.get(id_field)
        year = parse_year(props.get(date_field))
        if record_id in (None, "") or year is None:
            continue
        if year_range and not (year_range[0] <= year <= year_range[1]):
            continue
        lookup[str(record_id).strip()] = year

    logger.info("exact_lookup_loaded", path=str(path), rows=len(rows), entries=len(lookup))
    return lookup

