"""
HTTP surface for a browser-side viewport.

Serves the calibration controller over FastAPI; run with:
    python -m api.server --config config/params.yaml
"""
