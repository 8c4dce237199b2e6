from __future__ import annotations

import json
import math
import os
import tempfile
import threading
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from common.errors import InvalidPersistedData
from common.logging_setup import get_logger
from common.types import CorrespondencePair, GeoPoint, PixelPoint


log = get_logger("calibration.store")

RECORD_COUNT = 4


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, value: bytes) -> None: ...


class MemoryStore:
    """Dict-backed store (tests, ephemeral servers)."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self._data: Dict[str, bytes] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)


class FileStore:
    """
    One file per key under `root`:

        root/
          └─ calibration/
              └─ correspondences.json

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, so readers see either the old or the new value.
    """

    def __init__(self, root: str = "data/calibration"):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        parts = PurePosixPath(key).parts
        if not parts or key.startswith("/") or any(p in ("..", ".") for p in parts):
            raise ValueError(f"invalid store key: {key!r}")
        return self.root.joinpath(*parts).with_suffix(".json")

    def get(self, key: str) -> Optional[bytes]:
        p = self._path(key)
        if not p.is_file():
            return None
        with p.open("rb") as f:
            return f.read()

    def set(self, key: str, value: bytes) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=p.parent, prefix=p.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(value)
            os.replace(tmp, p)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def store_from_config(cfg: Dict[str, Any]) -> KeyValueStore:
    """Build the store named by the `storage` config section."""
    backend = str(cfg.get("backend", "file")).lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "file":
        return FileStore(cfg.get("root", "data/calibration"))
    raise ValueError(f"unknown storage backend: {backend}")


# -------------------------
# Codec
# -------------------------
def encode_correspondences(pairs: Sequence[CorrespondencePair]) -> bytes:
    """Serialize exactly four pairs as a JSON array of {pixel:{x,y}, geo:{lat,lon}}."""
    if len(pairs) != RECORD_COUNT:
        raise ValueError(f"exactly {RECORD_COUNT} correspondences are persisted, got {len(pairs)}")
    return json.dumps([p.to_dict() for p in pairs], separators=(",", ":")).encode("utf-8")


def _number(obj: Dict[str, Any], k: str) -> float:
    v = obj[k]
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise InvalidPersistedData(f"field {k!r} must be a finite number")
    try:
        f = float(v)
    except OverflowError as e:
        raise InvalidPersistedData(f"field {k!r} is out of float range") from e
    if not math.isfinite(f):
        raise InvalidPersistedData(f"field {k!r} must be a finite number")
    return f


def _exact_keys(obj: Any, keys: Tuple[str, ...], where: str) -> Dict[str, Any]:
    if not isinstance(obj, dict) or set(obj.keys()) != set(keys):
        raise InvalidPersistedData(f"{where} must have exactly the fields {list(keys)}")
    return obj


def decode_correspondences(raw: bytes) -> List[CorrespondencePair]:
    """
    Strictly parse persisted correspondences.

    Raises InvalidPersistedData for anything other than a JSON array of
    exactly four records, each with exactly `pixel:{x,y}` and `geo:{lat,lon}`
    holding finite numbers (geo within WGS84 range).
    """
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        raise InvalidPersistedData(f"not valid JSON: {e}") from e
    if not isinstance(data, list) or len(data) != RECORD_COUNT:
        raise InvalidPersistedData(f"expected a list of {RECORD_COUNT} records")

    pairs: List[CorrespondencePair] = []
    for i, rec in enumerate(data):
        rec = _exact_keys(rec, ("pixel", "geo"), f"record {i}")
        px = _exact_keys(rec["pixel"], ("x", "y"), f"record {i}.pixel")
        geo = _exact_keys(rec["geo"], ("lat", "lon"), f"record {i}.geo")
        try:
            pairs.append(
                CorrespondencePair(
                    pixel=PixelPoint(_number(px, "x"), _number(px, "y")),
                    geo=GeoPoint(lat=_number(geo, "lat"), lon=_number(geo, "lon")),
                )
            )
        except ValueError as e:
            raise InvalidPersistedData(f"record {i}: {e}") from e
    return pairs


def load_correspondences(store: KeyValueStore, key: str) -> Optional[List[CorrespondencePair]]:
    """Read and validate stored pairs; absent or invalid data both come back as None."""
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return decode_correspondences(raw)
    except InvalidPersistedData as e:
        log.warning("Ignoring invalid persisted correspondences", extra={"extra": {"key": key, "error": str(e)}})
        return None


def save_correspondences(store: KeyValueStore, key: str, pairs: Sequence[CorrespondencePair]) -> None:
    store.set(key, encode_correspondences(pairs))
