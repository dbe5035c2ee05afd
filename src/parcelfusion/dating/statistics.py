"""
Year Statistics

Per-category histograms of known construction years, gathered in the first
pass over a source and used as the last step of the date waterfall.
"""
from collections import Counter
from typing import Dict, Optional, Tuple

from src.parcelfusion.models.parcel import LandUseCategory, NormalizedParcel
from src.parcelfusion.utils.geo_utils import round_half_up


def histogram_median(histogram: Counter) -> Optional[int]:
    """
    Median of a year histogram.

    An even count averages the two middle years and rounds half up.
    """
    total = sum(histogram.values())
    if total == 0:
        return None

    lower_rank = (total - 1) // 2
    upper_rank = total // 2
    lower = upper = None
    seen = 0
    for year in sorted(histogram):
        seen += histogram[year]
        if lower is None and seen > lower_rank:
            lower = year
        if seen > upper_rank:
            upper = year
            break
    return round_half_up((lower + upper) / 2)


class YearStatistics:
    """
    Known-year histograms keyed by land-use category plus a global one.

    Only counts are held, never records, so the first pass stays constant
    in memory per distinct year.
    """

    def __init__(self, fallback_year: int):
        self.fallback_year = fallback_year
        self.by_category: Dict[LandUseCategory, Counter] = {}
        self.overall: Counter = Counter()
        self._medians: Dict[Optional[LandUseCategory], Optional[int]] = {}

    def add(self, parcel: NormalizedParcel) -> None:
        if parcel.year_built is None:
            return
        self.add_year(parcel.land_use_category, parcel.year_built)

    def add_year(self, category: LandUseCategory, year: int) -> None:
        self.by_category.setdefault(category, Counter())[year] += 1
        self.overall[year] += 1
        self._medians.pop(category, None)
        self._medians.pop(None, None)

    @property
    def known_count(self) -> int:
        return sum(self.overall.values())

    def category_median(self, category: LandUseCategory) -> Optional[int]:
        if category not in self._medians:
            self._medians[category] = histogram_median(self.by_category.get(category, Counter()))
        return self._medians[category]

    def global_median(self) -> Optional[int]:
        if None not in self._medians:
            self._medians[None] = histogram_median(self.overall)
        return self._medians[None]

    def median_for(self, category: LandUseCategory) -> Tuple[int, str]:
        """
        Year for a parcel with no better evidence.

        Returns:
            Tuple of (year, provenance): the category median, else the
            global median, else the configured fallback year
        """
        median = self.category_median(category)
        if median is not None:
            return median, f"category:{category.value}"

        median = self.global_median()
        if median is not None:
            return median, "global"

        return self.fallback_year, "fallback"

    def summary(self) -> Dict[str, Optional[int]]:
        medians = {c.value: self.category_median(c) for c in self.by_category}
        medians["global"] = self.global_median()
        return medians
