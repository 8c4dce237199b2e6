from __future__ import annotations

from typing import Tuple

import numpy as np

from common.errors import ProjectionDivergence
from common.types import GeoPoint, PixelPoint


# |w| below this fraction of the magnitude of its terms counts as a zero divisor.
_W_REL_EPS = 1e-12


def apply_homography(H: np.ndarray, u: float, v: float) -> Tuple[float, float]:
    """
    Homogeneous multiply H @ [u, v, 1] followed by the perspective divide.

    Raises ProjectionDivergence when the third component is ~0 relative to the
    terms that produced it (the point sits on the line sent to infinity).
    """
    p = np.array([u, v, 1.0], dtype=float)
    x, y, w = H @ p
    magnitude = float(np.abs(H[2]) @ np.abs(p))
    if not np.isfinite(w) or magnitude == 0.0 or abs(w) <= _W_REL_EPS * magnitude:
        raise ProjectionDivergence(f"perspective divide by ~0 at ({u}, {v})")
    xo, yo = x / w, y / w
    if not (np.isfinite(xo) and np.isfinite(yo)):
        raise ProjectionDivergence(f"non-finite projection at ({u}, {v})")
    return float(xo), float(yo)


def forward(H: np.ndarray, pixel: PixelPoint) -> GeoPoint:
    """Pixel -> geo with the forward matrix (output vector is (lon, lat))."""
    lon, lat = apply_homography(H, pixel.x, pixel.y)
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise ProjectionDivergence(f"pixel ({pixel.x}, {pixel.y}) projects outside WGS84 range")
    return GeoPoint(lat=lat, lon=lon)


def inverse(H_inv: np.ndarray, geo: GeoPoint) -> PixelPoint:
    """Geo -> pixel with the inverse matrix (input vector is (lon, lat))."""
    x, y = apply_homography(H_inv, geo.lon, geo.lat)
    return PixelPoint(x, y)
