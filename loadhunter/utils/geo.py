"""
Great-circle distance helpers.

All distances are in statute miles using a spherical Earth of radius 3959 mi,
which is accurate enough for lane grouping and pickup radius checks.
"""

import math
from typing import Optional

EARTH_RADIUS_MILES = 3959.0


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Distance in miles between two latitude/longitude points.

    Args:
        lat1, lng1: First point in decimal degrees
        lat2, lng2: Second point in decimal degrees

    Returns:
        Great-circle distance in miles (0.0 for identical points)
    """
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def has_coordinates(lat: Optional[float], lng: Optional[float]) -> bool:
    return lat is not None and lng is not None
