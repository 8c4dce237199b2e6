"""
Tracking: live position fixes projected onto the calibrated raster

Provides:
- LiveProjectionTracker: fix -> (pixel position, accuracy radius in pixels), last fix wins
- Fix providers:
    - PushFixSource: fixes pushed in by a client (HTTP API)
    - ReplayFixSource: replay from CSV (ts, lat, lon, accuracy_m) or JSONL
- A small CLI in service.py that replays a fix file against a stored calibration.

Usage examples:
    from tracking.tracker import LiveProjectionTracker
    from tracking.sources import ReplayFixSource, PushFixSource
"""
