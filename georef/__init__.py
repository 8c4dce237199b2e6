"""
Georeferencing core: four-point projective transform between a raster and WGS84

This package provides:
- solve_homography: exact 4-correspondence fit of the pixel -> (lon, lat) matrix
- invert_homography: adjugate/determinant inverse with a relative singularity test
- projector.forward / projector.inverse: homogeneous projection with perspective divide
- estimate_scale: pairwise-average meters-per-pixel (isotropic approximation)
- compute_transform: all of the above, producing an immutable TransformBundle
"""
from .homography import solve_homography, invert_homography
from .scale import estimate_scale
from .transform import TransformBundle, compute_transform

__all__ = [
    "solve_homography",
    "invert_homography",
    "estimate_scale",
    "TransformBundle",
    "compute_transform",
]
