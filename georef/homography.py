from __future__ import annotations

from itertools import combinations
from typing import List, Sequence, Tuple

import numpy as np

from common.errors import DegenerateConfiguration
from common.types import CorrespondencePair
from common.utils import to_numpy_3x3


# Reject systems whose normalized 8x8 condition number exceeds this.
_COND_MAX = 1e12
# Twice-triangle-area floor for normalized point sets (coords are O(1) after conditioning).
_AREA_MIN = 1e-9
# |det| floor relative to the Hadamard bound of the matrix.
_DET_REL_EPS = 1e-9


def _normalizer(pts: np.ndarray) -> np.ndarray:
    """
    Similarity transform moving the centroid to the origin and the mean
    distance to sqrt(2). Conditions the 8x8 system without changing the solution.
    """
    c = pts.mean(axis=0)
    d = np.linalg.norm(pts - c, axis=1).mean()
    if not np.isfinite(d) or d <= 0.0:
        raise DegenerateConfiguration("all points coincide")
    s = np.sqrt(2.0) / d
    return np.array([[s, 0.0, -s * c[0]], [0.0, s, -s * c[1]], [0.0, 0.0, 1.0]], dtype=float)


def _apply(T: np.ndarray, pts: np.ndarray) -> np.ndarray:
    hom = np.column_stack([pts, np.ones(len(pts))]) @ T.T
    return hom[:, :2] / hom[:, 2:3]


def _check_general_position(pts: np.ndarray, label: str) -> None:
    """Any three of the four points collinear (or two coincident) makes the fit singular."""
    for i, j, k in combinations(range(len(pts)), 3):
        u = pts[j] - pts[i]
        v = pts[k] - pts[i]
        if abs(u[0] * v[1] - u[1] * v[0]) < _AREA_MIN:
            raise DegenerateConfiguration(f"{label} points {i + 1}, {j + 1}, {k + 1} are collinear or coincident")


def build_system(pixel: np.ndarray, real: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Stack the 8x8 linear system for h11..h32 (h33 fixed to 1).

    pixel: (4,2) array of (x, y); real: (4,2) array of (lon, lat).
    For each pair two rows:
        [xp, yp, 1, 0, 0, 0, -xr*xp, -xr*yp] = xr
        [0, 0, 0, xp, yp, 1, -yr*xp, -yr*yp] = yr
    """
    A: List[List[float]] = []
    b: List[float] = []
    for (xp, yp), (xr, yr) in zip(pixel, real):
        A.append([xp, yp, 1.0, 0.0, 0.0, 0.0, -xr * xp, -xr * yp])
        b.append(xr)
        A.append([0.0, 0.0, 0.0, xp, yp, 1.0, -yr * xp, -yr * yp])
        b.append(yr)
    return np.asarray(A, dtype=float), np.asarray(b, dtype=float)


def solve_homography(pairs: Sequence[CorrespondencePair]) -> np.ndarray:
    """
    Fit the forward matrix H mapping pixel (x, y, 1) to (lon, lat, 1) from
    exactly four correspondences.

    Both point sets are conditioned with a similarity transform, the 8x8
    system is solved by LU with partial pivoting (LAPACK gesv) and the result
    is de-normalized and scaled so that H[2,2] == 1.

    Raises:
        ValueError: not exactly four pairs.
        DegenerateConfiguration: singular system (collinear/coincident points,
            or a configuration that sends the pixel origin to infinity).
    """
    if len(pairs) != 4:
        raise ValueError(f"exactly 4 correspondences required, got {len(pairs)}")

    pixel = np.array([p.pixel.as_tuple() for p in pairs], dtype=float)
    real = np.array([p.geo.lonlat() for p in pairs], dtype=float)  # (lon, lat) order

    T_pix = _normalizer(pixel)
    T_real = _normalizer(real)
    pixel_n = _apply(T_pix, pixel)
    real_n = _apply(T_real, real)
    _check_general_position(pixel_n, "pixel")
    _check_general_position(real_n, "geo")

    A, b = build_system(pixel_n, real_n)
    if np.linalg.cond(A) > _COND_MAX:
        raise DegenerateConfiguration("correspondence system is singular")
    try:
        h = np.linalg.solve(A, b)
    except np.linalg.LinAlgError as e:
        raise DegenerateConfiguration(f"correspondence system is singular: {e}") from e
    if not np.all(np.isfinite(h)):
        raise DegenerateConfiguration("non-finite homography parameters")

    Hn = np.array([[h[0], h[1], h[2]], [h[3], h[4], h[5]], [h[6], h[7], 1.0]], dtype=float)
    H = np.linalg.inv(T_real) @ Hn @ T_pix
    if abs(H[2, 2]) < 1e-12 * np.abs(H).max():
        raise DegenerateConfiguration("pixel origin maps to infinity; H[2,2] cannot be normalized")
    return to_numpy_3x3(H / H[2, 2])


def _hadamard_bound(M: np.ndarray) -> float:
    rows = float(np.prod(np.linalg.norm(M, axis=1)))
    cols = float(np.prod(np.linalg.norm(M, axis=0)))
    return min(rows, cols)


def invert_homography(H) -> np.ndarray:
    """
    Invert a 3x3 projective matrix with the adjugate / determinant formula.

    The singularity test is relative: |det(H)| must exceed 1e-9 times the
    Hadamard bound (product of row or column norms), so it is independent of
    the units the matrix is expressed in. The result is scaled so that its
    bottom-right entry is 1 whenever that entry is not ~0.
    """
    M = to_numpy_3x3(H)
    if not np.all(np.isfinite(M)):
        raise DegenerateConfiguration("matrix has non-finite entries")
    a, b, c = M[0]
    d, e, f = M[1]
    g, h, i = M[2]

    # cofactors
    A = e * i - f * h
    B = -(d * i - f * g)
    C = d * h - e * g
    det = a * A + b * B + c * C

    bound = _hadamard_bound(M)
    if bound == 0.0 or abs(det) < _DET_REL_EPS * bound:
        raise DegenerateConfiguration(f"matrix is singular (det={det:.3e})")

    adj = np.array(
        [
            [A, -(b * i - c * h), b * f - c * e],
            [B, a * i - c * g, -(a * f - c * d)],
            [C, -(a * h - b * g), a * e - b * d],
        ],
        dtype=float,
    )
    inv = adj / det
    if abs(inv[2, 2]) > 1e-12 * np.abs(inv).max():
        inv = inv / inv[2, 2]
    return inv
