"""
Parcel Clustering

Groups parcels into cells keyed by block identity plus a snapped grid cell
and summarizes each cell as one point feature for coarse zoom levels.
Keying on the block keeps clusters from spanning streets even when a grid
cell does.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from config.settings import settings
from src.parcelfusion.models.evidence import DateEvidence
from src.parcelfusion.models.parcel import LandUseCategory, NormalizedParcel
from src.parcelfusion.transformers.land_use import category_color, category_label
from src.parcelfusion.utils.geo_utils import grid_cell
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

ClusterKey = Tuple[str, int, int]
Measure = Literal["area", "units"]

UNKNOWN_BLOCK = "unknown"


@dataclass(frozen=True)
class BlockIdRule:
    """
    Derives the block identity from a parcel id.

    ``"012-345-678"`` -> ``"012-345"`` (first segments when the separator is
    present); ``"0123456789"`` -> ``"012345"`` (prefix otherwise).
    """

    separator: str = "-"
    segments: int = 2
    prefix_length: int = 6

    def block_id(self, parcel_id: Optional[str]) -> str:
        if parcel_id is None or parcel_id == "":
            return UNKNOWN_BLOCK
        text = str(parcel_id)
        if self.separator and self.separator in text:
            return self.separator.join(text.split(self.separator)[:self.segments])
        return text[:self.prefix_length]


class AggregatedFeature(BaseModel):
    """One cluster summary, placed at the centroid of its members."""

    block_id: str
    lng: float
    lat: float
    year: int
    category: LandUseCategory
    label: str
    color: str
    count: int = Field(..., ge=1)
    total_measure: float = Field(0.0, ge=0)
    estimated: bool

    @property
    def start_time(self) -> str:
        return f"{self.year:04d}-01-01T00:00:00Z"

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "Feature",
            "properties": {
                "blockId": self.block_id,
                "year": self.year,
                "use": self.category.value,
                "label": self.label,
                "count": self.count,
                "measure": round(self.total_measure, 2),
                "estimated": self.estimated,
                "startTime": self.start_time,
                "color": self.color,
            },
            "geometry": {
                "type": "Point",
                "coordinates": [round(self.lng, 6), round(self.lat, 6)],
            },
        }


@dataclass
class Cluster:
    """
    Running totals for one cluster.

    ``category_counts`` keeps insertion order, which breaks ties when
    choosing the dominant category.
    """
    block_id: str
    earliest_year: int
    lng_sum: float = 0.0
    lat_sum: float = 0.0
    count: int = 0
    category_counts: Dict[LandUseCategory, int] = field(default_factory=dict)
    total_measure: float = 0.0
    has_estimates: bool = False

    def add(
        self,
        lng: float,
        lat: float,
        category: LandUseCategory,
        year: int,
        measure: float,
        estimated: bool
    ) -> None:
        self.lng_sum += lng
        self.lat_sum += lat
        self.count += 1
        self.category_counts[category] = self.category_counts.get(category, 0) + 1
        self.total_measure += measure
        if year < self.earliest_year:
            self.earliest_year = year
        if estimated:
            self.has_estimates = True

    @property
    def centroid(self) -> Tuple[float, float]:
        return self.lng_sum / self.count, self.lat_sum / self.count

    def dominant_category(self) -> LandUseCategory:
        dominant = LandUseCategory.OTHER
        best = 0
        for category, count in self.category_counts.items():
            if count > best:
                best = count
                dominant = category
        return dominant


class ClusterMap:
    """
    Cluster accumulator for one source run.

    Mutated only by the single-threaded second pass; finalize() is called
    once all parcels are added.
    """

    def __init__(
        self,
        grid_size: Optional[float] = None,
        block_rule: Optional[BlockIdRule] = None,
        measure: Measure = "area"
    ):
        self.grid_size = grid_size or settings.default_grid_size
        if self.grid_size <= 0:
            raise ValueError("grid_size must be positive")
        self.block_rule = block_rule or BlockIdRule()
        self.measure = measure
        self.clusters: Dict[ClusterKey, Cluster] = {}
        self.skipped = 0

    def key_for(self, parcel_id: Optional[str], lng: float, lat: float) -> ClusterKey:
        ix, iy = grid_cell(lng, lat, self.grid_size)
        return self.block_rule.block_id(parcel_id), ix, iy

    def _measure_of(self, parcel: NormalizedParcel) -> float:
        value = parcel.units if self.measure == "units" else parcel.area_sqm
        return float(value) if value else 0.0

    def add(self, parcel: NormalizedParcel, evidence: DateEvidence) -> bool:
        """
        Add a dated parcel to its cluster.

        Returns:
            False when the parcel has no usable representative point and
            was excluded
        """
        point = parcel.representative_point()
        if point is None:
            self.skipped += 1
            return False

        lng, lat = point
        key = self.key_for(parcel.id, lng, lat)
        cluster = self.clusters.get(key)
        if cluster is None:
            cluster = Cluster(block_id=key[0], earliest_year=evidence.year)
            self.clusters[key] = cluster

        cluster.add(
            lng,
            lat,
            parcel.land_use_category,
            evidence.year,
            self._measure_of(parcel),
            evidence.estimated,
        )
        return True

    def __len__(self) -> int:
        return len(self.clusters)

    def finalize(self) -> List[AggregatedFeature]:
        """Summarize every cluster, sorted by year."""
        features = []
        for cluster in self.clusters.values():
            lng, lat = cluster.centroid
            category = cluster.dominant_category()
            features.append(AggregatedFeature(
                block_id=cluster.block_id,
                lng=lng,
                lat=lat,
                year=cluster.earliest_year,
                category=category,
                label=category_label(category),
                color=category_color(category),
                count=cluster.count,
                total_measure=cluster.total_measure,
                estimated=cluster.has_estimates,
            ))

        features.sort(key=lambda f: f.year)
        logger.info(
            "clusters_finalized",
            clusters=len(features),
            skipped=self.skipped,
            grid_size=self.grid_size
        )
        return features
