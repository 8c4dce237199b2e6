"""
Integration tests: controller wiring session, store, tracker and provider
"""

import json
import logging

import pytest

from calibration.controller import CalibrationController
from calibration.session import Phase
from calibration.store import MemoryStore, encode_correspondences, load_correspondences
from common.errors import DegenerateConfiguration, IncompleteCalibration
from common.types import CoordinateSpace, GeoPoint, ImageMeta, PixelPoint, PositionFix
from tracking.sources import PushFixSource
from tests.helpers import make_pairs


KEY = "calibration/correspondences"
IMAGE = ImageMeta(width=2000, height=1500, source="campus.png")


class RecordingSource(PushFixSource):
    """PushFixSource that remembers every subscription it handed out."""

    def __init__(self):
        super().__init__()
        self.subscriptions = []
        self.cancel_calls = []

    def subscribe(self, on_fix, on_error=None):
        sub = super().subscribe(on_fix, on_error)
        self.subscriptions.append(sub)
        return sub

    def _remove(self, sub):
        self.cancel_calls.append(sub)
        super()._remove(sub)


def _acquire(ctl, pairs):
    for pair in pairs:
        ctl.begin_point(CoordinateSpace.GEO, pair.geo)
        ctl.confirm_pending()
        ctl.begin_point(CoordinateSpace.PIXEL, pair.pixel)
        ctl.confirm_pending()


def _inside_fix():
    return PositionFix(lat=38.8715, lon=-77.0575, accuracy_m=10.0)


class TestCalibrationController:
    """Test cases for CalibrationController"""

    def test_acquisition_persists_and_arms_tracker(self, campus_pairs):
        store = MemoryStore()
        ctl = CalibrationController(store, KEY)
        ctl.load_image(IMAGE)

        _acquire(ctl, campus_pairs)

        assert ctl.session.complete
        assert ctl.tracker.bundle is ctl.bundle
        assert load_correspondences(store, KEY) == campus_pairs

    def test_restore_from_store(self, campus_pairs):
        store = MemoryStore({KEY: encode_correspondences(campus_pairs)})
        ctl = CalibrationController(store, KEY)

        state = ctl.load_image(IMAGE)

        assert state.phase is Phase.COMPLETE
        assert ctl.handle_fix(_inside_fix()) is not None

    def test_restore_disabled(self, campus_pairs):
        store = MemoryStore({KEY: encode_correspondences(campus_pairs)})
        ctl = CalibrationController(store, KEY)
        assert ctl.load_image(IMAGE, restore=False).phase is Phase.AWAITING_GEO

    def test_invalid_persisted_data_starts_fresh(self):
        ctl = CalibrationController(MemoryStore({KEY: b'{"not": "a list"}'}), KEY)
        state = ctl.load_image(IMAGE)

        assert state.phase is Phase.AWAITING_GEO
        assert state.step == 1

    @pytest.mark.parametrize("mutate", ["huge_int", "deep_nesting"])
    def test_unparseable_persisted_data_starts_fresh(self, campus_pairs, mutate):
        if mutate == "huge_int":
            recs = [p.to_dict() for p in campus_pairs]
            recs[0]["pixel"]["x"] = 10**400
            raw = json.dumps(recs).encode()
        else:
            raw = b"[" * 100000 + b"]" * 100000
        ctl = CalibrationController(MemoryStore({KEY: raw}), KEY)

        state = ctl.load_image(IMAGE)

        assert state.phase is Phase.AWAITING_GEO
        assert ctl.bundle is None

    def test_degenerate_persisted_data_starts_fresh(self):
        pairs = make_pairs([(0, 0), (10, 0), (20, 0), (30, 0)], [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)])
        ctl = CalibrationController(MemoryStore({KEY: encode_correspondences(pairs)}), KEY)

        assert ctl.load_image(IMAGE).phase is Phase.AWAITING_GEO
        assert ctl.bundle is None

    def test_new_image_cancels_prior_subscription_once(self, campus_pairs):
        source = RecordingSource()
        store = MemoryStore({KEY: encode_correspondences(campus_pairs)})
        ctl = CalibrationController(store, KEY, provider=source)

        ctl.load_image(IMAGE)
        old_tracker = ctl.tracker
        ctl.load_image(ImageMeta(width=2000, height=1500, source="other.png"))

        first, second = source.subscriptions
        assert source.cancel_calls == [first]
        assert not first.active and second.active
        assert source.subscriber_count == 1

        assert source.push(_inside_fix()) == 1
        assert old_tracker.latest is None
        assert ctl.tracker.latest is not None

    def test_close_cancels(self):
        source = RecordingSource()
        ctl = CalibrationController(MemoryStore(), KEY, provider=source)
        ctl.load_image(IMAGE)

        ctl.close()
        ctl.close()

        assert len(source.cancel_calls) == 1
        assert ctl.snapshot()["subscribed"] is False

    def test_fixes_before_calibration_produce_nothing(self):
        source = RecordingSource()
        ctl = CalibrationController(MemoryStore(), KEY, provider=source)
        ctl.load_image(IMAGE)

        assert source.push(_inside_fix()) == 1
        assert ctl.tracker.latest is None

    def test_failed_calibration_leaves_store_empty(self):
        store = MemoryStore()
        ctl = CalibrationController(store, KEY)
        ctl.load_image(IMAGE)
        pairs = make_pairs([(0, 0), (10, 0), (20, 0), (30, 0)], [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)])

        with pytest.raises(DegenerateConfiguration):
            _acquire(ctl, pairs)

        assert ctl.session.state.phase is Phase.FAILED
        assert store.get(KEY) is None
        assert ctl.tracker.bundle is None
        assert ctl.reset().phase is Phase.AWAITING_GEO

    def test_reset_disarms_tracker(self, campus_pairs):
        ctl = CalibrationController(MemoryStore(), KEY)
        ctl.load_image(IMAGE)
        _acquire(ctl, campus_pairs)

        ctl.reset()

        assert ctl.tracker.bundle is None
        assert ctl.handle_fix(_inside_fix()) is None

    def test_calibrate_from_corners(self, campus_pairs):
        store = MemoryStore()
        ctl = CalibrationController(store, KEY)
        ctl.load_image(IMAGE)

        bundle = ctl.calibrate_from_corners([p.geo for p in campus_pairs])

        assert bundle.scale > 0
        assert ctl.session.complete
        assert [p.pixel for p in load_correspondences(store, KEY)] == list(IMAGE.corners())
        geo = ctl.project_pixel(PixelPoint(2000, 1500))
        assert geo.lat == pytest.approx(38.8700, abs=1e-6)
        assert geo.lon == pytest.approx(-77.0548, abs=1e-6)

    def test_corner_calibration_log_names_its_origin(self, campus_pairs, caplog):
        ctl = CalibrationController(MemoryStore(), KEY)
        ctl.load_image(IMAGE)

        with caplog.at_level(logging.INFO):
            ctl.calibrate_from_corners([p.geo for p in campus_pairs])

        messages = [r.getMessage() for r in caplog.records if r.name == "calibration"]
        assert "Calibration set from corners" in messages
        assert "Calibration restored" not in messages

    def test_restore_log_names_its_origin(self, campus_pairs, caplog):
        ctl = CalibrationController(MemoryStore({KEY: encode_correspondences(campus_pairs)}), KEY)

        with caplog.at_level(logging.INFO):
            ctl.load_image(IMAGE)

        restored = [r for r in caplog.records if r.getMessage() == "Calibration restored"]
        assert len(restored) == 1
        assert restored[0].extra["origin"] == "persisted"

    def test_corners_without_image(self, campus_pairs):
        ctl = CalibrationController(MemoryStore(), KEY)
        with pytest.raises(IncompleteCalibration):
            ctl.calibrate_from_corners([p.geo for p in campus_pairs])

    def test_corners_wrong_count(self, campus_pairs):
        ctl = CalibrationController(MemoryStore(), KEY)
        ctl.load_image(IMAGE)
        with pytest.raises(ValueError):
            ctl.calibrate_from_corners([p.geo for p in campus_pairs[:3]])

    def test_projection_requires_calibration(self):
        ctl = CalibrationController(MemoryStore(), KEY)
        ctl.load_image(IMAGE)
        with pytest.raises(IncompleteCalibration):
            ctl.project_pixel(PixelPoint(1, 1))
        with pytest.raises(IncompleteCalibration):
            ctl.project_geo(GeoPoint(lat=0.0, lon=0.0))
