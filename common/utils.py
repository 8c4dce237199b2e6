from __future__ import annotations

from typing import Tuple
from dataclasses import dataclass, field
from collections import deque
from datetime import datetime
import time
import numpy as np


@dataclass(slots=True)
class RateTimer:
    """
    Simple rate tracker for loop diagnostics.

    Usage:
        rt = RateTimer(window=50)
        for fix in source.fixes():
            hz = rt.tick()
    """
    window: int = 50
    _times: deque = field(default_factory=deque)

    def __post_init__(self) -> None:
        self._times = deque(maxlen=self.window)

    def tick(self) -> float:
        t = time.perf_counter()
        self._times.append(t)
        if len(self._times) < 2:
            return 0.0
        dt = (self._times[-1] - self._times[0]) / (len(self._times) - 1)
        return 0.0 if dt <= 0 else 1.0 / dt


def to_numpy_3x3(x) -> np.ndarray:
    """Ensure input is a 3x3 float64 numpy array (copy if necessary)."""
    a = np.asarray(x, dtype=float)
    if a.shape != (3, 3):
        raise ValueError("Expected 3x3")
    return a.copy()


def frozen_array(a: np.ndarray) -> np.ndarray:
    """Return a read-only float64 copy."""
    out = np.array(a, dtype=float, copy=True)
    out.setflags(write=False)
    return out


def parse_size(s: str) -> Tuple[int, int]:
    """Parse 'WxH' or 'W,H' into (width, height)."""
    if "x" in s.lower():
        w, h = s.lower().split("x")
    else:
        parts = s.split(",")
        if len(parts) != 2:
            raise ValueError("Size must be WxH or W,H")
        w, h = parts
    return (int(w), int(h))


def parse_iso8601(ts: str) -> datetime:
    """Parse a strict ISO-8601 timestamp with optional 'Z'."""
    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    return datetime.fromisoformat(ts)
