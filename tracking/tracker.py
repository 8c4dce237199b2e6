from __future__ import annotations

import threading
from typing import Callable, Optional

from common.errors import IncompleteCalibration, ProjectionDivergence
from common.logging_setup import get_logger
from common.types import GeoPoint, PixelPoint, PositionFix, ProjectedFix
from georef.transform import TransformBundle
from tracking.sources import FixError, FixErrorCode


log = get_logger("tracking")

DEFAULT_RADIUS_PX = 50.0


class LiveProjectionTracker:
    """
    Projects live position fixes onto the calibrated raster.

    Holds at most one result: each successful fix replaces `latest`
    ("last fix wins"). Without a bundle fixes produce nothing in pixel space;
    a fix whose projection diverges is skipped. Neither case ends the
    subscription feeding this tracker.
    """

    def __init__(
        self,
        bundle: Optional[TransformBundle] = None,
        default_radius_px: float = DEFAULT_RADIUS_PX,
        on_projection: Optional[Callable[[ProjectedFix], None]] = None,
    ):
        self._bundle = bundle
        self.default_radius_px = float(default_radius_px)
        self._on_projection = on_projection
        self._latest: Optional[ProjectedFix] = None
        self._lock = threading.Lock()
        self.emitted = 0
        self.skipped = 0
        self.last_error: Optional[FixError] = None

    @property
    def bundle(self) -> Optional[TransformBundle]:
        return self._bundle

    @property
    def latest(self) -> Optional[ProjectedFix]:
        with self._lock:
            return self._latest

    def set_bundle(self, bundle: Optional[TransformBundle]) -> None:
        """Swap the transform; the previous projection is dropped."""
        with self._lock:
            self._bundle = bundle
            self._latest = None

    def radius_px(self, accuracy_m: float, bundle: Optional[TransformBundle] = None) -> float:
        b = bundle if bundle is not None else self._bundle
        if b is not None and b.scale > 0:
            return float(accuracy_m) / b.scale
        return self.default_radius_px

    def project(self, geo: GeoPoint) -> PixelPoint:
        b = self._bundle
        if b is None:
            raise IncompleteCalibration("no transform available")
        return b.geo_to_pixel(geo)

    def on_fix(self, fix: PositionFix) -> Optional[ProjectedFix]:
        b = self._bundle
        if b is None:
            return None
        try:
            pixel = b.geo_to_pixel(fix.geo)
        except ProjectionDivergence as e:
            with self._lock:
                self.skipped += 1
            log.debug("Fix skipped", extra={"extra": {"lat": fix.lat, "lon": fix.lon, "reason": str(e)}})
            return None

        out = ProjectedFix(pixel=pixel, radius_px=self.radius_px(fix.accuracy_m, b), fix=fix)
        with self._lock:
            # set_bundle() may have run while projecting; never publish against a stale transform
            if self._bundle is not b:
                return None
            self._latest = out
            self.emitted += 1
        if self._on_projection is not None:
            self._on_projection(out)
        return out

    def on_error(self, err: FixError) -> None:
        self.last_error = err
        if err.code is FixErrorCode.PERMISSION_DENIED:
            log.warning("Location permission denied by user", extra={"extra": {"detail": err.message}})
        else:
            log.warning("Geolocation error", extra={"extra": {"code": err.code.value, "detail": err.message}})
