"""
Dating Package

Construction-year resolution: dated boundaries, the distance model, year
statistics and the waterfall that combines them.
"""
from src.parcelfusion.dating.boundaries import BoundarySet, load_boundary_set, load_exact_lookup
from src.parcelfusion.dating.distance_model import ConcentricRingModel, YearEstimator
from src.parcelfusion.dating.statistics import YearStatistics
from src.parcelfusion.dating.waterfall import DateWaterfall, DatingContext

__all__ = [
    "BoundarySet",
    "load_boundary_set",
    "load_exact_lookup",
    "ConcentricRingModel",
    "YearEstimator",
    "YearStatistics",
    "DateWaterfall",
    "DatingContext",
]
