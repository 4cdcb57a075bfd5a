"""
Geographic helpers shared by the aggregator, detector and normalizer.
"""
from __future__ import annotations

import math
from typing import Optional

from config.countries import COUNTRY_REGISTRY

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def valid_coordinates(lat, lon) -> bool:
    """True for finite numbers inside the WGS84 range."""
    if isinstance(lat, bool) or isinstance(lon, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return False
    if math.isnan(lat) or math.isnan(lon) or math.isinf(lat) or math.isinf(lon):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def nearest_country(lat: float, lon: float, max_km: float) -> Optional[str]:
    """ISO-2 code of the closest registry reference point within max_km."""
    best_code: Optional[str] = None
    best_km = max_km
    for country in COUNTRY_REGISTRY:
        km = haversine_km(lat, lon, country.lat, country.lon)
        if km <= best_km:
            best_code, best_km = country.iso2, km
    return best_code


def mean_position(points: list[tuple[float, float]]) -> tuple[float, float]:
    """Arithmetic mean of (lat, lon) pairs. Adequate at country scale away from the antimeridian."""
    lat = sum(p[0] for p in points) / len(points)
    lon = sum(p[1] for p in points) / len(points)
    return lat, lon
