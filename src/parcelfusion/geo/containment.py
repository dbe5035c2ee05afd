"""
Spatial Containment

Point-in-polygon tests for dated boundaries. Each checker keeps a bounding
box so points far from the boundary are rejected without ray casting.
"""
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Sequence, Tuple, Union

from src.parcelfusion.exceptions import MalformedGeometryError
from src.parcelfusion.models.parcel import Geometry, Position

Ring = List[Tuple[float, float]]
PolygonRings = List[Ring]


@dataclass(frozen=True)
class BBox:
    """Axis-aligned bounding box in lon/lat."""

    min_lng: float
    min_lat: float
    max_lng: float
    max_lat: float

    def contains(self, point: Position) -> bool:
        lng, lat = point
        return self.min_lng <= lng <= self.max_lng and self.min_lat <= lat <= self.max_lat


def point_in_ring(point: Position, ring: Sequence[Tuple[float, float]]) -> bool:
    """
    Even-odd ray casting: cast a ray to the right and count edge crossings.
    """
    x, y = point
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def point_in_polygon(point: Position, polygon: PolygonRings) -> bool:
    """Inside the outer ring and outside every hole."""
    if not point_in_ring(point, polygon[0]):
        return False
    return not any(point_in_ring(point, hole) for hole in polygon[1:])


def _ring(raw: Any) -> Ring:
    ring = [(float(p[0]), float(p[1])) for p in raw]
    if len(set(ring)) < 3:
        raise MalformedGeometryError(
            f"Ring has {len(set(ring))} distinct vertices, at least 3 required"
        )
    return ring


def _polygons(geometry: Union[Geometry, Mapping[str, Any]]) -> List[PolygonRings]:
    if isinstance(geometry, Geometry):
        geom_type, coords = geometry.type, geometry.coordinates
    else:
        geom_type, coords = geometry.get("type"), geometry.get("coordinates")

    try:
        if geom_type == "Polygon":
            members = [coords]
        elif geom_type == "MultiPolygon":
            members = list(coords)
        else:
            raise MalformedGeometryError(f"Boundary must be a polygon, got {geom_type}")
        polygons = [[_ring(ring) for ring in polygon] for polygon in members if polygon]
    except (TypeError, IndexError, ValueError) as e:
        raise MalformedGeometryError(f"Unreadable boundary coordinates: {e}") from e

    if not polygons:
        raise MalformedGeometryError("Boundary has no polygons")
    return polygons


class ContainmentChecker:
    """
    Reusable containment test for one Polygon or MultiPolygon.

    Attributes:
        bbox: Precomputed bounding box over every ring
        ray_casts: Number of queries that passed the bbox and were ray cast
    """

    def __init__(self, geometry: Union[Geometry, Mapping[str, Any]]):
        """
        Raises:
            MalformedGeometryError: For non-polygons and degenerate rings
        """
        self.polygons = _polygons(geometry)
        xs = [x for polygon in self.polygons for ring in polygon for x, _ in ring]
        ys = [y for polygon in self.polygons for ring in polygon for _, y in ring]
        self.bbox = BBox(min(xs), min(ys), max(xs), max(ys))
        self.ray_casts = 0

    def contains(self, point: Position) -> bool:
        if not self.bbox.contains(point):
            return False
        self.ray_casts += 1
        return any(point_in_polygon(point, polygon) for polygon in self.polygons)

    def contains_many(self, points: Iterable[Position]) -> List[bool]:
        return [self.contains(point) for point in points]


def build_checker(geometry: Union[Geometry, Mapping[str, Any]]) -> ContainmentChecker:
    """Build a containment checker for a polygonal geometry."""
    return ContainmentChecker(geometry)


def batch_contains(
    points: Iterable[Position],
    geometry: Union[Geometry, Mapping[str, Any]]
) -> List[bool]:
    """Test many points against one geometry, building the checker once."""
    return build_checker(geometry).contains_many(points)
