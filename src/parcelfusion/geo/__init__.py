"""
Geo Package

Point-in-polygon containment with bounding-box prefilters.
"""
from src.parcelfusion.geo.containment import ContainmentChecker, batch_contains, build_checker

__all__ = ["ContainmentChecker", "batch_contains", "build_checker"]
