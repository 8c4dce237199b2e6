from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence, Tuple

import numpy as np

from common.logging_setup import get_logger
from common.types import CorrespondencePair, GeoPoint, PixelPoint
from common.utils import frozen_array
from georef import projector
from georef.homography import invert_homography, solve_homography
from georef.scale import estimate_scale


log = get_logger("georef")


@dataclass(frozen=True)
class TransformBundle:
    """
    Immutable result of a successful calibration.

    Attributes:
        forward: 3x3 pixel -> (lon, lat) matrix, H[2,2] == 1 (read-only).
        inverse: 3x3 (lon, lat) -> pixel matrix (read-only).
        scale: average meters per pixel; 0.0 means unavailable.
        pairs: the four correspondences the bundle was fitted from.
    """
    forward: np.ndarray
    inverse: np.ndarray
    scale: float
    pairs: Tuple[CorrespondencePair, ...]

    @property
    def has_scale(self) -> bool:
        return self.scale > 0.0

    def pixel_to_geo(self, pixel: PixelPoint) -> GeoPoint:
        return projector.forward(self.forward, pixel)

    def geo_to_pixel(self, geo: GeoPoint) -> PixelPoint:
        return projector.inverse(self.inverse, geo)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "forward": self.forward.tolist(),
            "inverse": self.inverse.tolist(),
            "scale_m_per_px": self.scale,
            "pairs": [p.to_dict() for p in self.pairs],
        }


def compute_transform(pairs: Sequence[CorrespondencePair]) -> TransformBundle:
    """
    Solver -> inverter -> scale estimator, all into temporaries.
    Nothing is returned unless every step succeeds.

    Raises:
        DegenerateConfiguration: from the solver or the inverter.
    """
    pairs = tuple(pairs)
    H = solve_homography(pairs)
    H_inv = invert_homography(H)
    scale = estimate_scale(pairs)
    log.info(
        "Transform computed",
        extra={"extra": {"scale_m_per_px": scale, "forward": H.tolist()}},
    )
    return TransformBundle(forward=frozen_array(H), inverse=frozen_array(H_inv), scale=scale, pairs=pairs)
