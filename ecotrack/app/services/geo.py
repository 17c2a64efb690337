"""
Geographic helpers for route building.

Points are (longitude, latitude) pairs, matching how report coordinates are
stored and emitted.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 point, kept in (lng, lat) order."""
    lng: float
    lat: float

    def as_pair(self) -> Tuple[float, float]:
        return (self.lng, self.lat)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lon1_rad = math.radians(lon1)
    lat2_rad = math.radians(lat2)
    lon2_rad = math.radians(lon2)

    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad

    a = math.sin(dlat / 2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_between(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in km between two points."""
    return haversine_distance(a.lat, a.lng, b.lat, b.lng)


def coordinate_problem(lng, lat) -> Optional[str]:
    """
    Describe why a (lng, lat) pair is unusable, or None if it is valid.
    """
    if lng is None or lat is None:
        return "missing coordinate"

    try:
        lng = float(lng)
        lat = float(lat)
    except (TypeError, ValueError):
        return "non-numeric coordinate"

    if not (math.isfinite(lng) and math.isfinite(lat)):
        return "non-finite coordinate"
    if not -180.0 <= lng <= 180.0:
        return f"longitude {lng} outside [-180, 180]"
    if not -90.0 <= lat <= 90.0:
        return f"latitude {lat} outside [-90, 90]"

    return None
