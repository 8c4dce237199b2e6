from __future__ import annotations

"""
Tracking service: replay a fix file against the stored calibration and write
the projected pixel positions to JSONL.

Examples:
  # Use the correspondences persisted by a previous calibration
  python -m tracking.service --image data/maps/campus.png --fixes data/fixes/walk.csv

  # No stored calibration yet: calibrate from the raster corners first
  python -m tracking.service --size 2000x1500 --fixes data/fixes/walk.jsonl \
      --corners "38.8730,-77.0600;38.8730,-77.0550;38.8700,-77.0550;38.8700,-77.0600"
"""

import argparse
import json
from pathlib import Path
from typing import Dict, List, Optional

from PIL import Image

from calibration.controller import CalibrationController
from calibration.store import store_from_config
from common.config import load_config
from common.errors import GeoRefError
from common.logging_setup import get_logger, setup_logging
from common.types import GeoPoint, ImageMeta
from common.utils import RateTimer, parse_size
from tracking.sources import FixError, ReplayFixSource


log = get_logger("tracking.service")


def parse_corners(s: str) -> List[GeoPoint]:
    """'lat,lon;lat,lon;lat,lon;lat,lon' -> four GeoPoints (TL, TR, BR, BL)."""
    parts = [p for p in s.split(";") if p.strip()]
    if len(parts) != 4:
        raise ValueError("Corners must be four 'lat,lon' pairs separated by ';'")
    out = []
    for p in parts:
        lat, lon = (float(v) for v in p.split(","))
        out.append(GeoPoint(lat=lat, lon=lon))
    return out


def image_meta(image: Optional[str], size: Optional[str]) -> ImageMeta:
    if image:
        if not Path(image).exists():
            raise SystemExit(f"Image not found: {image}")
        with Image.open(image) as im:
            w, h = im.size
        return ImageMeta(width=w, height=h, source=image)
    if size:
        w, h = parse_size(size)
        return ImageMeta(width=w, height=h)
    raise SystemExit("Either --image or --size is required")


def _write_row(path: Path, row: Dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", buffering=1) as f:
        f.write(json.dumps(row) + "\n")


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Project replayed position fixes onto a calibrated raster")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--image", help="Raster file (only its width/height are read)")
    ap.add_argument("--size", help="Raster size WxH when no image file is given")
    ap.add_argument("--fixes", required=True, help="CSV or JSONL fix file")
    ap.add_argument("--corners", help="Corner calibration 'lat,lon;...' (TL;TR;BR;BL) if nothing is stored")
    ap.add_argument("--out", default=None, help="Output JSONL (default: logging.projections_file)")
    ap.add_argument("--realtime", action="store_true", help="Pace replay by fix timestamps")
    args = ap.parse_args(argv)

    P = load_config(args.config)
    setup_logging(P["logging"].get("level", "INFO"), P["logging"].get("file"), force=True)

    meta = image_meta(args.image, args.size)
    store = store_from_config(P["storage"])
    ctl = CalibrationController(
        store,
        P["storage"].get("key", "calibration/correspondences"),
        default_radius_px=float(P["tracking"].get("default_radius_px", 50.0)),
    )
    ctl.load_image(meta)

    if not ctl.session.complete:
        if not args.corners:
            log.error("No stored calibration and no --corners given")
            print("No calibration available: calibrate first or pass --corners.")
            return 2
        try:
            ctl.calibrate_from_corners(parse_corners(args.corners))
        except (GeoRefError, ValueError) as e:
            log.error("Corner calibration failed", extra={"extra": {"error": str(e)}})
            print(f"Corner calibration failed: {e}")
            return 2

    out_path = Path(args.out or P["logging"].get("projections_file", "logs/projections.jsonl"))
    replay = P.get("replay", {})
    source = ReplayFixSource(
        args.fixes,
        realtime=bool(args.realtime or replay.get("realtime", False)),
        scale_dt=float(replay.get("scale_dt", 1.0)),
    )

    rt = RateTimer(window=50)
    n_ok = n_skip = n_err = 0
    log.info("Replay started", extra={"extra": {"fixes": args.fixes, "out": str(out_path)}})
    for rec in source.records():
        if isinstance(rec, FixError):
            ctl.handle_fix_error(rec)
            n_err += 1
            continue
        projected = ctl.handle_fix(rec)
        if projected is None:
            n_skip += 1
            _write_row(out_path, {"ts": rec.ts, "status": "skipped", "lat": rec.lat, "lon": rec.lon})
            continue
        n_ok += 1
        _write_row(out_path, {"status": "ok", **projected.to_dict()})
        hz = rt.tick()
        if n_ok % 100 == 0:
            log.debug("Replay progress", extra={"extra": {"projected": n_ok, "rate_hz": hz}})

    log.info(
        "Replay finished",
        extra={"extra": {"projected": n_ok, "skipped": n_skip, "errors": n_err}},
    )
    print(f"Tracking service finished: {n_ok} projected, {n_skip} skipped, {n_err} malformed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
