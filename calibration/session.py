from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from common.errors import (
    CoordinateSpaceMismatch,
    GeoRefError,
    InvalidPersistedData,
)
from common.logging_setup import get_logger
from common.types import CoordinateSpace, CorrespondencePair, GeoPoint, PixelPoint
from georef.transform import TransformBundle, compute_transform


log = get_logger("calibration")

NUM_POINTS = 4

Point = Union[GeoPoint, PixelPoint]
TransformFn = Callable[[Sequence[CorrespondencePair]], TransformBundle]


class Phase(str, Enum):
    AWAITING_GEO = "awaiting_geo"
    AWAITING_PIXEL = "awaiting_pixel"
    COMPLETE = "complete"
    # transform failed on the last confirmation; only reset() leaves this phase
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CalibrationState:
    phase: Phase
    step: int

    @property
    def expected_space(self) -> Optional[CoordinateSpace]:
        if self.phase is Phase.AWAITING_GEO:
            return CoordinateSpace.GEO
        if self.phase is Phase.AWAITING_PIXEL:
            return CoordinateSpace.PIXEL
        return None

    @property
    def collecting(self) -> bool:
        return self.expected_space is not None


INITIAL_STATE = CalibrationState(Phase.AWAITING_GEO, 1)

_POINT_TYPES = {CoordinateSpace.GEO: GeoPoint, CoordinateSpace.PIXEL: PixelPoint}


class CalibrationSession:
    """
    Two-phase acquisition of four (geo, pixel) correspondences.

    Each step collects a geo point first, then the matching pixel point:

        AWAITING_GEO(1) -> AWAITING_PIXEL(1) -> AWAITING_GEO(2) -> ... -> AWAITING_PIXEL(4)

    The eighth confirmation runs the transform (solver -> inverter -> scale).
    On success the session is COMPLETE and `bundle` is set; on failure it is
    FAILED with no bundle and the error is re-raised to the caller. Persisting
    the correspondences is left to the driver that owns the store.
    """

    def __init__(self, transform_fn: TransformFn = compute_transform):
        self._transform_fn = transform_fn
        self._state = INITIAL_STATE
        self.geo_list: List[GeoPoint] = []
        self.pixel_list: List[PixelPoint] = []
        self._pending: Optional[Point] = None
        self._pending_space: Optional[CoordinateSpace] = None
        self.bundle: Optional[TransformBundle] = None
        self.error: Optional[GeoRefError] = None

    # -------- construction --------

    @classmethod
    def restore(
        cls,
        pairs: Sequence[CorrespondencePair],
        transform_fn: TransformFn = compute_transform,
        *,
        origin: str = "persisted",
    ) -> "CalibrationSession":
        """
        Skip acquisition and go straight to COMPLETE from four known pairs.
        `origin` only labels the log record ("persisted", "corners").

        Raises:
            InvalidPersistedData: not exactly four pairs.
            DegenerateConfiguration: the stored pairs do not define a transform.
        """
        pairs = tuple(pairs)
        if len(pairs) != NUM_POINTS or not all(isinstance(p, CorrespondencePair) for p in pairs):
            raise InvalidPersistedData(f"expected {NUM_POINTS} correspondence pairs, got {len(pairs)}")
        bundle = transform_fn(pairs)
        s = cls(transform_fn)
        s.geo_list = [p.geo for p in pairs]
        s.pixel_list = [p.pixel for p in pairs]
        s.bundle = bundle
        s._state = CalibrationState(Phase.COMPLETE, NUM_POINTS)
        msg = "Calibration restored" if origin == "persisted" else f"Calibration set from {origin}"
        log.info(msg, extra={"extra": {"origin": origin, "scale_m_per_px": bundle.scale}})
        return s

    # -------- read access --------

    @property
    def state(self) -> CalibrationState:
        return self._state

    @property
    def pending(self) -> Optional[Point]:
        return self._pending

    @property
    def complete(self) -> bool:
        return self._state.phase is Phase.COMPLETE

    def correspondences(self) -> Tuple[CorrespondencePair, ...]:
        """Pairs collected so far (a geo point without its pixel partner is left out)."""
        return tuple(CorrespondencePair(pixel=p, geo=g) for g, p in zip(self.geo_list, self.pixel_list))

    # -------- transitions --------

    def _require_space(self, space: CoordinateSpace) -> None:
        expected = self._state.expected_space
        if expected is None:
            raise CoordinateSpaceMismatch(f"session is {self._state.phase.value}; reset to recalibrate")
        if space is not expected:
            raise CoordinateSpaceMismatch(
                f"step {self._state.step} expects a {expected.value} point, got {space.value}"
            )

    @staticmethod
    def _check_point(space: CoordinateSpace, point: Point) -> None:
        if not isinstance(point, _POINT_TYPES[space]):
            raise TypeError(f"{space.value} point must be {_POINT_TYPES[space].__name__}")

    def begin_point(self, space: CoordinateSpace, point: Point) -> bool:
        """
        Start a pending point in `space`.
        Returns False (no-op) if a point is already pending for this phase.
        """
        space = CoordinateSpace(space)
        self._require_space(space)
        self._check_point(space, point)
        if self._pending is not None:
            log.debug("begin_point ignored: point already pending", extra={"extra": {"step": self._state.step}})
            return False
        self._pending = point
        self._pending_space = space
        return True

    def amend_pending(self, point: Point) -> bool:
        """Move the pending point. Returns False if nothing is pending."""
        if self._pending is None or self._pending_space is None:
            return False
        self._check_point(self._pending_space, point)
        self._pending = point
        return True

    def confirm_pending(self) -> CalibrationState:
        """
        Commit the pending point and advance. No-op when nothing is pending.

        Raises:
            DegenerateConfiguration: the eighth confirmation produced a singular
                system; the session is left FAILED.
        """
        if self._pending is None:
            return self._state

        step = self._state.step
        if self._state.phase is Phase.AWAITING_GEO:
            self.geo_list.append(self._pending)  # type: ignore[arg-type]
            self._clear_pending()
            self._state = CalibrationState(Phase.AWAITING_PIXEL, step)
        else:
            self.pixel_list.append(self._pending)  # type: ignore[arg-type]
            self._clear_pending()
            if step < NUM_POINTS:
                self._state = CalibrationState(Phase.AWAITING_GEO, step + 1)
            else:
                self._finish()

        log.info("Calibration point confirmed", extra={"extra": {"step": step, "next": self._state.phase.value}})
        return self._state

    def _finish(self) -> None:
        try:
            bundle = self._transform_fn(self.correspondences())
        except GeoRefError as e:
            self.bundle = None
            self.error = e
            self._state = CalibrationState(Phase.FAILED, NUM_POINTS)
            log.warning("Calibration failed", extra={"extra": {"error": str(e)}})
            raise
        self.bundle = bundle
        self.error = None
        self._state = CalibrationState(Phase.COMPLETE, NUM_POINTS)

    def reset(self) -> CalibrationState:
        """Drop every collected point and the bundle; back to AWAITING_GEO(1)."""
        self.geo_list = []
        self.pixel_list = []
        self._clear_pending()
        self.bundle = None
        self.error = None
        self._state = INITIAL_STATE
        return self._state

    def _clear_pending(self) -> None:
        self._pending = None
        self._pending_space = None

    def to_dict(self) -> Dict[str, Any]:
        pending = None
        if self._pending is not None and self._pending_space is not None:
            pending = {"space": self._pending_space.value, **self._pending.to_dict()}
        return {
            "phase": self._state.phase.value,
            "step": self._state.step,
            "expected_space": None if self._state.expected_space is None else self._state.expected_space.value,
            "pending": pending,
            "geo": [g.to_dict() for g in self.geo_list],
            "pixel": [p.to_dict() for p in self.pixel_list],
            "calibrated": self.bundle is not None,
            "scale_m_per_px": None if self.bundle is None else self.bundle.scale,
            "error": None if self.error is None else str(self.error),
        }
