"""
Distance helpers: great-circle distance and human-readable formatting.

At city scale (a few kilometres) haversine curvature error is negligible,
so no ellipsoidal correction is applied.
"""

import math

EARTH_RADIUS_M = 6371000


def distance_in_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> int:
    """Haversine distance between two points, rounded to whole meters.

    Symmetric: swapping the two points yields the same value.
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
         * math.sin(d_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return int(math.floor(EARTH_RADIUS_M * c + 0.5))


def format_distance(meters: float) -> str:
    """Render meters as "850 m" below 1 km, "1.2 km" at or above."""
    if meters >= 1000:
        return f"{meters / 1000:.1f} km"
    return f"{int(meters)} m"
