"""
Date Resolution Waterfall

Assigns every parcel a construction year by consulting evidence sources in
order of authority until one answers:

    source year -> exact lookup -> spatial join -> distance model -> median
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Optional

from src.parcelfusion.dating.boundaries import BoundarySet
from src.parcelfusion.dating.distance_model import YearEstimator
from src.parcelfusion.dating.statistics import YearStatistics
from src.parcelfusion.models.evidence import Confidence, DateEvidence, DateMethod
from src.parcelfusion.models.parcel import NormalizedParcel


@dataclass
class DatingContext:
    """
    Evidence available to the waterfall for one source.

    Attributes:
        statistics: Known-year histograms from the first pass
        exact_lookup: Authoritative id -> year table
        boundaries: Dated boundaries for the spatial join
        distance_model: Imputation strategy, if the source configures one
    """
    statistics: YearStatistics
    exact_lookup: Dict[str, int] = field(default_factory=dict)
    boundaries: BoundarySet = field(default_factory=BoundarySet)
    distance_model: Optional[YearEstimator] = None


class DateWaterfall:
    """
    Resolves DateEvidence for parcels and tallies which step answered.
    """

    def __init__(self, context: DatingContext, trust_source_years: bool = True):
        self.context = context
        self.trust_source_years = trust_source_years
        self.method_counts: Counter = Counter()

    def resolve(self, parcel: NormalizedParcel) -> DateEvidence:
        evidence = self._resolve(parcel)
        self.method_counts[evidence.method.value] += 1
        return evidence

    def _resolve(self, parcel: NormalizedParcel) -> DateEvidence:
        ctx = self.context

        if self.trust_source_years and parcel.year_built is not None:
            return DateEvidence(
                year=parcel.year_built,
                method=DateMethod.EXACT,
                confidence=Confidence.HIGH,
                provenance="source",
            )

        year = ctx.exact_lookup.get(parcel.id)
        if year is not None:
            return DateEvidence(
                year=year,
                method=DateMethod.EXACT,
                confidence=Confidence.HIGH,
                provenance="lookup",
            )

        point = parcel.representative_point()

        if point is not None and len(ctx.boundaries):
            boundary = ctx.boundaries.find(point)
            if boundary is not None:
                return DateEvidence(
                    year=boundary.year,
                    method=DateMethod.SPATIAL_JOIN,
                    confidence=Confidence.MEDIUM if boundary.dated_by == "document" else Confidence.LOW,
                    provenance=boundary.name,
                )

        if point is not None and ctx.distance_model is not None:
            estimate = ctx.distance_model.estimate(point)
            if estimate is not None:
                year, provenance = estimate
                return DateEvidence(
                    year=year,
                    method=DateMethod.DISTANCE_MODEL,
                    confidence=Confidence.LOW,
                    provenance=provenance,
                )

        year, provenance = ctx.statistics.median_for(parcel.land_use_category)
        return DateEvidence(
            year=year,
            method=DateMethod.CATEGORY_MEDIAN,
            confidence=Confidence.LOW,
            provenance=provenance,
        )
