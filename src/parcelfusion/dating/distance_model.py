"""
Distance-Based Year Estimation

Heuristic imputation for parcels no authoritative or boundary evidence
covers. The shipped model assumes development spread outward from a few
historical centers: each distance ring around the nearest center carries a
year range and a year is sampled from it. The assumption lives entirely in
the ring table; it is not historically accurate and every year it produces
is flagged as estimated.
"""
import random
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple

from src.parcelfusion.models.parcel import Position
from src.parcelfusion.utils.geo_utils import haversine_km


class YearEstimator(Protocol):
    """Strategy returning (year, provenance) for a point, or None to defer."""

    def estimate(self, point: Position) -> Optional[Tuple[int, str]]:
        ...


@dataclass(frozen=True)
class HistoricalCenter:
    name: str
    lng: float
    lat: float


@dataclass(frozen=True)
class YearRing:
    """
    Distance band with the years sampled for it.

    Attributes:
        max_km: Exclusive outer radius; None for the unbounded last ring
        start_year: First year of the range
        span: Number of years in the range (start_year .. start_year+span-1)
    """
    max_km: Optional[float]
    start_year: int
    span: int


class ConcentricRingModel:
    """
    Samples a year from the ring the point's distance to the nearest center
    falls in.
    """

    def __init__(
        self,
        centers: Sequence[HistoricalCenter],
        rings: Sequence[YearRing],
        seed: Optional[int] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Args:
            centers: Historical centers; the nearest one is used
            rings: Rings ordered by increasing radius; the last one should be
                unbounded
            seed: Seed for reproducible runs (ignored when rng is given)
            rng: Random generator to draw from
        """
        if not rings:
            raise ValueError("ConcentricRingModel needs at least one ring")
        self.centers = list(centers)
        self.rings = list(rings)
        self.rng = rng or random.Random(seed)

    def nearest_center(self, point: Position) -> Optional[Tuple[HistoricalCenter, float]]:
        if not self.centers:
            return None
        lng, lat = point
        distances = [(c, haversine_km(lng, lat, c.lng, c.lat)) for c in self.centers]
        return min(distances, key=lambda item: item[1])

    def ring_for(self, distance_km: float) -> YearRing:
        for ring in self.rings:
            if ring.max_km is None or distance_km < ring.max_km:
                return ring
        return self.rings[-1]

    def estimate(self, point: Position) -> Optional[Tuple[int, str]]:
        nearest = self.nearest_center(point)
        if nearest is None:
            return None

        center, distance = nearest
        ring = self.ring_for(distance)
        year = ring.start_year + self.rng.randrange(max(ring.span, 1))
        return year, f"{center.name}:{distance:.1f}km"


# Rings used for the Las Vegas valley: downtown core, inner ring, middle
# ring, outer suburbs and exurbs
DEFAULT_RINGS = (
    YearRing(2.0, 1950, 20),
    YearRing(5.0, 1960, 20),
    YearRing(15.0, 1970, 30),
    YearRing(30.0, 1990, 25),
    YearRing(None, 2000, 20),
)
