"""Distance from a kos to the campus.

``kos_listings.distance_to_its_km`` is denormalised onto the row at write
time so the map query can filter and sort on it without trigonometry in SQL.
"""

from __future__ import annotations

import math

__all__ = ["EARTH_RADIUS_KM", "haversine_km", "distance_to_campus_km"]

#: Mean Earth radius used by the haversine formula.
EARTH_RADIUS_KM: float = 6371.0088


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometres between two WGS-84 points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def distance_to_campus_km(
    latitude: float,
    longitude: float,
    campus: tuple[float, float],
) -> float:
    """Distance from ``(latitude, longitude)`` to *campus*, rounded to 10 m."""
    return round(haversine_km(latitude, longitude, campus[0], campus[1]), 2)
