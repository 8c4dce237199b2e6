from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "logging": {"level": "INFO", "file": None, "projections_file": "logs/projections.jsonl"},
    "storage": {"backend": "file", "root": "data/calibration", "key": "calibration/correspondences"},
    "tracking": {"default_radius_px": 50.0},
    "replay": {"realtime": False, "scale_dt": 1.0},
    "server": {"host": "0.0.0.0", "port": 8000},
}


def _merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in over.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load YAML params and overlay them on DEFAULTS.
    A missing file is not an error: the defaults are returned.
    """
    p = Path(path or DEFAULT_CONFIG_PATH)
    if not p.exists():
        return copy.deepcopy(DEFAULTS)
    with p.open("r") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config root must be a mapping: {p}")
    return _merge(copy.deepcopy(DEFAULTS), loaded)
