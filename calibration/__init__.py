"""
Calibration: acquisition of four (geo, pixel) correspondences

Provides:
- CalibrationSession: the AWAITING_GEO / AWAITING_PIXEL state machine, with restore
  from four persisted pairs
- Persistence: strict codec for the four-record schema plus MemoryStore / FileStore
- CalibrationController: the single driver owning session, tracker, store and the
  fix subscription
"""
from .session import CalibrationSession, CalibrationState, Phase
from .controller import CalibrationController

__all__ = ["CalibrationSession", "CalibrationState", "Phase", "CalibrationController"]
