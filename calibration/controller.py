from __future__ import annotations

import threading
from typing import Any, Dict, Optional, Sequence

from calibration.session import CalibrationSession, CalibrationState, Point, TransformFn
from calibration.store import KeyValueStore, load_correspondences, save_correspondences
from common.errors import GeoRefError, IncompleteCalibration
from common.logging_setup import get_logger
from common.types import (
    CoordinateSpace,
    CorrespondencePair,
    GeoPoint,
    ImageMeta,
    PixelPoint,
    PositionFix,
    ProjectedFix,
)
from georef.transform import TransformBundle, compute_transform
from tracking.sources import FixError, GeolocationProvider, Subscription
from tracking.tracker import DEFAULT_RADIUS_PX, LiveProjectionTracker


log = get_logger("calibration.controller")


class CalibrationController:
    """
    Single driver for the three event sources: point gestures from the
    viewport, fixes from the geolocation provider and the persistent store.

    Owns the current session, the current tracker and at most one provider
    subscription. Every public method runs under one lock, so callers never
    observe a half-applied transition.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = "calibration/correspondences",
        *,
        provider: Optional[GeolocationProvider] = None,
        default_radius_px: float = DEFAULT_RADIUS_PX,
        transform_fn: TransformFn = compute_transform,
    ):
        self.store = store
        self.key = key
        self.provider = provider
        self.default_radius_px = float(default_radius_px)
        self._transform_fn = transform_fn
        self._lock = threading.RLock()
        self.image: Optional[ImageMeta] = None
        self.session = CalibrationSession(transform_fn)
        self.tracker = LiveProjectionTracker(default_radius_px=self.default_radius_px)
        self._subscription: Optional[Subscription] = None

    # -------- lifecycle --------

    def load_image(self, meta: ImageMeta, *, restore: bool = True) -> CalibrationState:
        """
        Switch to a new raster: drop the old subscription, session and tracker,
        restore persisted correspondences if they are valid, then subscribe a
        fresh tracker to the provider.
        """
        with self._lock:
            self._cancel_subscription()
            self.image = meta
            self.session = CalibrationSession(self._transform_fn)
            self.tracker = LiveProjectionTracker(default_radius_px=self.default_radius_px)
            if restore:
                self._restore()
            if self.provider is not None:
                self._subscription = self.provider.subscribe(self.tracker.on_fix, self.tracker.on_error)
                log.info("Subscribed to fix stream", extra={"extra": {"image": meta.source}})
            return self.session.state

    def _restore(self) -> None:
        pairs = load_correspondences(self.store, self.key)
        if pairs is None:
            return
        try:
            self.session = CalibrationSession.restore(pairs, self._transform_fn)
        except GeoRefError as e:
            log.warning("Persisted calibration unusable; starting fresh", extra={"extra": {"error": str(e)}})
            self.session = CalibrationSession(self._transform_fn)
            return
        self.tracker.set_bundle(self.session.bundle)

    def _cancel_subscription(self) -> None:
        sub, self._subscription = self._subscription, None
        if sub is not None:
            sub.cancel()
            log.info("Fix subscription cancelled")

    def close(self) -> None:
        with self._lock:
            self._cancel_subscription()

    # -------- acquisition --------

    def begin_point(self, space: CoordinateSpace, point: Point) -> bool:
        with self._lock:
            return self.session.begin_point(space, point)

    def amend_pending(self, point: Point) -> bool:
        with self._lock:
            return self.session.amend_pending(point)

    def confirm_pending(self) -> CalibrationState:
        with self._lock:
            state = self.session.confirm_pending()
            if self.session.complete and self.tracker.bundle is not self.session.bundle:
                self._commit()
            return state

    def reset(self) -> CalibrationState:
        with self._lock:
            self.session = CalibrationSession(self._transform_fn)
            self.tracker.set_bundle(None)
            log.info("Calibration reset")
            return self.session.state

    def calibrate_from_corners(self, geo_corners: Sequence[GeoPoint]) -> TransformBundle:
        """
        Calibrate in one step using the raster's corners as pixel points.
        geo_corners are top-left, top-right, bottom-right, bottom-left.
        """
        with self._lock:
            if self.image is None:
                raise IncompleteCalibration("no image loaded")
            if len(geo_corners) != 4:
                raise ValueError("exactly 4 corner coordinates required")
            pairs = [CorrespondencePair(pixel=p, geo=g) for p, g in zip(self.image.corners(), geo_corners)]
            session = CalibrationSession.restore(pairs, self._transform_fn, origin="corners")
            self.session = session
            self._commit()
            return session.bundle  # type: ignore[return-value]

    def _commit(self) -> None:
        bundle = self.session.bundle
        self.tracker.set_bundle(bundle)
        try:
            save_correspondences(self.store, self.key, self.session.correspondences())
        except OSError as e:
            log.error("Failed to persist correspondences", extra={"extra": {"key": self.key, "error": str(e)}})
        log.info("Calibration complete", extra={"extra": {"scale_m_per_px": None if bundle is None else bundle.scale}})

    # -------- tracking --------

    def handle_fix(self, fix: PositionFix) -> Optional[ProjectedFix]:
        return self.tracker.on_fix(fix)

    def handle_fix_error(self, err: FixError) -> None:
        self.tracker.on_error(err)

    @property
    def bundle(self) -> Optional[TransformBundle]:
        return self.session.bundle

    def _require_bundle(self) -> TransformBundle:
        b = self.session.bundle
        if b is None:
            raise IncompleteCalibration("calibration is not complete")
        return b

    def project_pixel(self, pixel: PixelPoint) -> GeoPoint:
        return self._require_bundle().pixel_to_geo(pixel)

    def project_geo(self, geo: GeoPoint) -> PixelPoint:
        return self._require_bundle().geo_to_pixel(geo)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            latest = self.tracker.latest
            return {
                "image": None
                if self.image is None
                else {"width": self.image.width, "height": self.image.height, "source": self.image.source},
                "session": self.session.to_dict(),
                "subscribed": self._subscription is not None and self._subscription.active,
                "latest": None if latest is None else latest.to_dict(),
            }
