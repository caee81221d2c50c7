from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_MILES = 3958.8
METERS_PER_MILE = 1609.34
MILES_PER_DEGREE_LAT = 69.0

# Fixed half-width of the tract query box around the site.
DEFAULT_ENVELOPE_MARGIN_DEG = 0.3
TRACT_DISTANCE_BUFFER_MILES = 1.5


@dataclass(frozen=True)
class Point:
    latitude: float
    longitude: float


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in miles."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: Point, b: Point) -> float:
    return haversine_miles(a.latitude, a.longitude, b.latitude, b.longitude)


def envelope_margin_degrees(max_radius_miles: float, latitude: float = 0.0) -> float:
    """Half-width of the query box in degrees.

    Stays at the fixed 0.3 degree margin unless the buffered radius would not
    fit inside it, in which case the box grows to cover the radius along the
    narrower (longitude) axis at this latitude.
    """
    reach = max(0.0, max_radius_miles) + TRACT_DISTANCE_BUFFER_MILES
    cos_lat = max(0.1, math.cos(math.radians(latitude)))
    needed = reach / (MILES_PER_DEGREE_LAT * cos_lat)
    return max(DEFAULT_ENVELOPE_MARGIN_DEG, needed)


def bounding_envelope(center: Point, margin_deg: float) -> tuple[float, float, float, float]:
    """Return (min_lon, min_lat, max_lon, max_lat)."""
    return (
        center.longitude - margin_deg,
        center.latitude - margin_deg,
        center.longitude + margin_deg,
        center.latitude + margin_deg,
    )
