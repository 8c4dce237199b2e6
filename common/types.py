from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Tuple, Any, Dict
from datetime import datetime, timezone
import math


IsoTime = str


def now_iso() -> IsoTime:
    """UTC timestamp in RFC3339/ISO-8601 with 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _finite(name: str, v: Any) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise TypeError(f"{name} must be a number")
    f = float(v)
    if not math.isfinite(f):
        raise ValueError(f"{name} must be finite")
    return f


class CoordinateSpace(str, Enum):
    """Which plane a submitted point lives in."""
    GEO = "geo"
    PIXEL = "pixel"


@dataclass(frozen=True, slots=True)
class PixelPoint:
    """Image-space point; origin top-left, y grows downward."""
    x: float
    y: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", _finite("x", self.x))
        object.__setattr__(self, "y", _finite("y", self.y))

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """WGS84 geodetic point (degrees)."""
    lat: float
    lon: float

    def __post_init__(self) -> None:
        lat = _finite("lat", self.lat)
        lon = _finite("lon", self.lon)
        if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
            raise ValueError("lat/lon out of range")
        object.__setattr__(self, "lat", lat)
        object.__setattr__(self, "lon", lon)

    def lonlat(self) -> Tuple[float, float]:
        """Real-world vector in (lon, lat) order, as used by the projective matrices."""
        return (self.lon, self.lat)

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


@dataclass(frozen=True, slots=True)
class CorrespondencePair:
    """One matched (pixel, geo) location."""
    pixel: PixelPoint
    geo: GeoPoint

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {"pixel": self.pixel.to_dict(), "geo": self.geo.to_dict()}


@dataclass(frozen=True, slots=True)
class ImageMeta:
    """
    Raster metadata supplied once an image is loaded.

    Attributes:
        width, height: image dimensions in pixels.
        source: optional path/URL of the raster (informational only).
    """
    width: int
    height: int
    source: Optional[str] = None

    def __post_init__(self) -> None:
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise ValueError("width/height must be > 0")
        object.__setattr__(self, "width", int(self.width))
        object.__setattr__(self, "height", int(self.height))

    def corners(self) -> Tuple[PixelPoint, PixelPoint, PixelPoint, PixelPoint]:
        """Top-left, top-right, bottom-right, bottom-left."""
        w, h = float(self.width), float(self.height)
        return (PixelPoint(0.0, 0.0), PixelPoint(w, 0.0), PixelPoint(w, h), PixelPoint(0.0, h))


@dataclass(slots=True)
class PositionFix:
    """
    Geolocation fix from the position provider.

    Attributes:
        lat, lon: WGS84 degrees.
        accuracy_m: horizontal accuracy radius (meters).
        ts: ISO-8601 (UTC) timestamp; filled with now if omitted.
    """
    lat: float
    lon: float
    accuracy_m: float
    ts: IsoTime = field(default_factory=now_iso)

    def __post_init__(self) -> None:
        self.lat = _finite("lat", self.lat)
        self.lon = _finite("lon", self.lon)
        self.accuracy_m = _finite("accuracy_m", self.accuracy_m)
        if not (-90.0 <= self.lat <= 90.0) or not (-180.0 <= self.lon <= 180.0):
            raise ValueError("lat/lon out of range")
        if self.accuracy_m < 0:
            raise ValueError("accuracy_m must be >= 0")

    @property
    def geo(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lon)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ProjectedFix:
    """A fix placed on the raster: pixel position plus accuracy radius in pixels."""
    pixel: PixelPoint
    radius_px: float
    fix: PositionFix

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ts": self.fix.ts,
            "x": self.pixel.x,
            "y": self.pixel.y,
            "radius_px": self.radius_px,
            "lat": self.fix.lat,
            "lon": self.fix.lon,
            "accuracy_m": self.fix.accuracy_m,
        }
