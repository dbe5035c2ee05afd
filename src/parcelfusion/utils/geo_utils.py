"""
Geographic Utility Functions

Helper functions for geographic calculations including distance measurements
and grid snapping.
"""
import math
from math import radians, cos, sin, atan2, sqrt
from typing import Tuple

EARTH_RADIUS_KM = 6371.0


def haversine_km(
    lon1: float,
    lat1: float,
    lon2: float,
    lat2: float
) -> float:
    """
    Calculate great-circle distance between two points using Haversine formula.

    Args:
        lon1: Longitude of first point (decimal degrees)
        lat1: Latitude of first point (decimal degrees)
        lon2: Longitude of second point (decimal degrees)
        lat2: Latitude of second point (decimal degrees)

    Returns:
        Distance in kilometers

    Formula:
        a = sin²(Δlat/2) + cos(lat1) × cos(lat2) × sin²(Δlon/2)
        c = 2 × atan2(√a, √(1−a))
        distance = R × c  (R = 6,371 km)
    """
    phi1, phi2 = radians(lat1), radians(lat2)
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)

    a = sin(dlat / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def grid_cell(lng: float, lat: float, grid_size: float) -> Tuple[int, int]:
    """Integer cell indices of the grid square containing a point."""
    return math.floor(lng / grid_size), math.floor(lat / grid_size)


def round_half_up(value: float) -> int:
    """Round .5 upward, unlike Python's banker's rounding."""
    return math.floor(value + 0.5)
