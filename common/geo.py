from __future__ import annotations

import math

from common.types import GeoPoint, PixelPoint


# Mean Earth radius (m), IUGG
EARTH_RADIUS_M = 6371008.8


# -------------------------
# Great-circle distances
# -------------------------
def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance on a spherical Earth (meters)."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dphi = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2.0) ** 2
    # clamp: rounding can push a slightly above 1 for antipodal points
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, a)))


def geo_distance_m(a: GeoPoint, b: GeoPoint) -> float:
    return haversine_m(a.lat, a.lon, b.lat, b.lon)


# -------------------------
# Image plane
# -------------------------
def pixel_distance(a: PixelPoint, b: PixelPoint) -> float:
    """Euclidean distance between two image points (pixels)."""
    return math.hypot(b.x - a.x, b.y - a.y)
