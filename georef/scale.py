from __future__ import annotations

from itertools import combinations
from typing import Sequence

from common.geo import geo_distance_m, pixel_distance
from common.types import CorrespondencePair


def estimate_scale(pairs: Sequence[CorrespondencePair]) -> float:
    """
    Average meters-per-pixel over every unordered pair of correspondences.

    For each pair (i, j) with non-zero pixel separation the ratio
    great-circle distance / pixel distance is accumulated; the arithmetic
    mean is returned, or 0.0 when no pair qualifies.

    NOTE: isotropic approximation. It assumes a near-uniform scale across a
    locally planar raster and is not a rigorous conversion for large or
    strongly skewed images.
    """
    ratios = []
    for a, b in combinations(pairs, 2):
        d_px = pixel_distance(a.pixel, b.pixel)
        if d_px > 0:
            ratios.append(geo_distance_m(a.geo, b.geo) / d_px)
    if not ratios:
        return 0.0
    return float(sum(ratios) / len(ratios))
