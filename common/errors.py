"""
Error taxonomy for georeferencing and calibration.

Every error here is recoverable: calibration failures send the caller back to a
fresh acquisition, projection failures only affect the single point involved.
"""
from __future__ import annotations


class GeoRefError(Exception):
    """Base class for all georeferencing errors."""


class DegenerateConfiguration(GeoRefError):
    """Singular system: collinear/coincident points or a near-zero determinant."""


class IncompleteCalibration(GeoRefError):
    """A projection was requested before a transform bundle exists."""


class InvalidPersistedData(GeoRefError):
    """Stored correspondences are missing, malformed or not exactly four entries."""


class ProjectionDivergence(GeoRefError):
    """Perspective-divide denominator is ~0 for this point."""


class CoordinateSpaceMismatch(GeoRefError):
    """A point was submitted in a space the session is not currently collecting."""
