"""
Raster georeferencing test suite

Structure:
- unit/: solver, inverter, projector, scale, session, store, tracker, sources
- integration/: controller, HTTP API and replay CLI end to end
"""
