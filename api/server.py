"""
Calibration/tracking HTTP API

- A browser viewport loads a raster, then drives the four-point calibration
  with space-tagged points (begin / amend / confirm)
- Position fixes from the browser geolocation API are posted to /fixes and
  projected onto the raster; /position returns the latest projection
- Optional endpoints: /calibration/corners, /project/*, /health
"""
from __future__ import annotations

import argparse
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from calibration.controller import CalibrationController
from calibration.store import KeyValueStore, store_from_config
from common.config import load_config
from common.errors import (
    CoordinateSpaceMismatch,
    DegenerateConfiguration,
    GeoRefError,
    IncompleteCalibration,
    InvalidPersistedData,
    ProjectionDivergence,
)
from common.logging_setup import get_logger, setup_logging
from common.types import CoordinateSpace, GeoPoint, ImageMeta, PixelPoint, PositionFix
from tracking.sources import FixError, FixErrorCode, PushFixSource


log = get_logger("api")

_STATUS = {
    DegenerateConfiguration: 409,
    CoordinateSpaceMismatch: 409,
    IncompleteCalibration: 409,
    ProjectionDivergence: 422,
    InvalidPersistedData: 422,
}


class ImageIn(BaseModel):
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    source: Optional[str] = None


class PointIn(BaseModel):
    space: CoordinateSpace
    x: Optional[float] = None
    y: Optional[float] = None
    lat: Optional[float] = None
    lon: Optional[float] = None


class LatLonIn(BaseModel):
    lat: float
    lon: float


class CornersIn(BaseModel):
    # top-left, top-right, bottom-right, bottom-left
    corners: List[LatLonIn] = Field(..., min_length=4, max_length=4)


class FixIn(BaseModel):
    lat: float
    lon: float
    accuracy_m: float = Field(..., ge=0)
    ts: Optional[str] = None


class FixErrorIn(BaseModel):
    code: FixErrorCode
    message: str = ""


def _to_point(p: PointIn):
    try:
        if p.space is CoordinateSpace.GEO:
            if p.lat is None or p.lon is None:
                raise ValueError("geo point needs lat and lon")
            return GeoPoint(lat=p.lat, lon=p.lon)
        if p.x is None or p.y is None:
            raise ValueError("pixel point needs x and y")
        return PixelPoint(p.x, p.y)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))


def create_app(
    P: Optional[Dict[str, Any]] = None,
    *,
    store: Optional[KeyValueStore] = None,
    provider: Optional[PushFixSource] = None,
) -> FastAPI:
    """Build the API around a single CalibrationController."""
    P = P or load_config()
    store = store if store is not None else store_from_config(P["storage"])
    provider = provider if provider is not None else PushFixSource()
    ctl = CalibrationController(
        store,
        P["storage"].get("key", "calibration/correspondences"),
        provider=provider,
        default_radius_px=float(P["tracking"].get("default_radius_px", 50.0)),
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        ctl.close()

    app = FastAPI(title="Raster GeoRef API", version="1.0.0", lifespan=lifespan)
    app.state.controller = ctl
    app.state.provider = provider

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten as needed
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GeoRefError)
    async def _georef_error(_req: Request, exc: GeoRefError):
        status = next((s for t, s in _STATUS.items() if isinstance(exc, t)), 400)
        return JSONResponse({"error": type(exc).__name__, "detail": str(exc)}, status_code=status)

    def _state() -> Dict[str, Any]:
        return ctl.snapshot()

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "image_loaded": ctl.image is not None,
            "calibrated": ctl.bundle is not None,
            "subscribers": provider.subscriber_count,
        }

    @app.post("/image")
    def load_image(body: ImageIn):
        ctl.load_image(ImageMeta(width=body.width, height=body.height, source=body.source))
        return _state()

    @app.get("/calibration")
    def calibration():
        return _state()

    @app.post("/calibration/points/begin")
    def begin_point(body: PointIn):
        created = ctl.begin_point(body.space, _to_point(body))
        return {"created": created, **_state()}

    @app.post("/calibration/points/amend")
    def amend_point(body: PointIn):
        try:
            amended = ctl.amend_pending(_to_point(body))
        except TypeError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"amended": amended, **_state()}

    @app.post("/calibration/points/confirm")
    def confirm_point():
        ctl.confirm_pending()
        return _state()

    @app.post("/calibration/reset")
    def reset():
        ctl.reset()
        return _state()

    @app.post("/calibration/corners")
    def corners(body: CornersIn):
        try:
            geo = [GeoPoint(lat=c.lat, lon=c.lon) for c in body.corners]
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        bundle = ctl.calibrate_from_corners(geo)
        return {"transform": bundle.to_dict(), **_state()}

    @app.post("/fixes")
    def post_fix(body: FixIn):
        kwargs = {"ts": body.ts} if body.ts else {}
        try:
            fix = PositionFix(lat=body.lat, lon=body.lon, accuracy_m=body.accuracy_m, **kwargs)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        delivered = provider.push(fix)
        latest = ctl.tracker.latest
        projected = latest if latest is not None and latest.fix is fix else None
        return {"delivered": delivered, "projection": None if projected is None else projected.to_dict()}

    @app.post("/fixes/error")
    def post_fix_error(body: FixErrorIn):
        delivered = provider.push_error(FixError(body.code, body.message))
        return {"delivered": delivered}

    @app.get("/position")
    def position():
        latest = ctl.tracker.latest
        if latest is None:
            return Response(status_code=204)
        return latest.to_dict()

    @app.get("/project/pixel")
    def project_pixel(x: float = Query(...), y: float = Query(...)):
        try:
            pixel = PixelPoint(x, y)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        geo = ctl.project_pixel(pixel)
        return geo.to_dict()

    @app.get("/project/geo")
    def project_geo(lat: float = Query(..., ge=-90, le=90), lon: float = Query(..., ge=-180, le=180)):
        try:
            geo = GeoPoint(lat=lat, lon=lon)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        px = ctl.project_geo(geo)
        return px.to_dict()

    return app


def main() -> None:
    ap = argparse.ArgumentParser(description="Raster georeferencing API")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--host", default=None)
    ap.add_argument("--port", type=int, default=None)
    args = ap.parse_args()

    P = load_config(args.config)
    setup_logging(P["logging"].get("level", "INFO"), P["logging"].get("file"), force=True)
    host = args.host or P["server"].get("host", "0.0.0.0")
    port = int(args.port or P["server"].get("port", 8000))
    log.info("Starting API", extra={"extra": {"host": host, "port": port}})
    uvicorn.run(create_app(P), host=host, port=port)


# -------- local dev entrypoint --------
if __name__ == "__main__":
    main()
