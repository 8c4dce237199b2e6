from __future__ import annotations

import csv
import json
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Protocol, Union

from common.logging_setup import get_logger
from common.types import PositionFix
from common.utils import parse_iso8601


log = get_logger("tracking.sources")

CSV_HEADER = ["ts", "lat", "lon", "accuracy_m"]


class FixErrorCode(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"


@dataclass(frozen=True, slots=True)
class FixError:
    """Error event from a geolocation provider."""
    code: FixErrorCode
    message: str = ""


FixCallback = Callable[[PositionFix], None]
ErrorCallback = Callable[[FixError], None]


class Subscription:
    """
    Handle for one provider subscription.

    cancel() may be called any number of times from any thread; only the
    first call has an effect. Delivery and cancel share one lock, so once
    cancel() returns no callback is running or will run.
    """

    def __init__(
        self,
        on_fix: FixCallback,
        on_error: Optional[ErrorCallback] = None,
        on_cancel: Optional[Callable[["Subscription"], None]] = None,
    ):
        self._on_fix = on_fix
        self._on_error = on_error
        self._on_cancel = on_cancel
        self._cancelled = threading.Event()
        self._lock = threading.RLock()
        self.worker: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set()

    @property
    def cancelled_event(self) -> threading.Event:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
        if self._on_cancel is not None:
            self._on_cancel(self)

    def deliver(self, fix: PositionFix) -> bool:
        with self._lock:
            if not self.active:
                return False
            self._on_fix(fix)
            return True

    def deliver_error(self, err: FixError) -> bool:
        with self._lock:
            if not self.active or self._on_error is None:
                return False
            self._on_error(err)
            return True

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until a background delivery thread (if any) has finished."""
        if self.worker is not None:
            self.worker.join(timeout=timeout)


class GeolocationProvider(Protocol):
    def subscribe(self, on_fix: FixCallback, on_error: Optional[ErrorCallback] = None) -> Subscription: ...


class PushFixSource:
    """
    Provider fed from outside (e.g. fixes posted by a browser client).
    push()/push_error() dispatch synchronously to every live subscription.
    """

    def __init__(self) -> None:
        self._subs: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, on_fix: FixCallback, on_error: Optional[ErrorCallback] = None) -> Subscription:
        sub = Subscription(on_fix, on_error, on_cancel=self._remove)
        with self._lock:
            self._subs.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def push(self, fix: PositionFix) -> int:
        """Returns the number of subscriptions the fix was delivered to."""
        with self._lock:
            subs = list(self._subs)
        return sum(1 for s in subs if s.deliver(fix))

    def push_error(self, err: FixError) -> int:
        with self._lock:
            subs = list(self._subs)
        return sum(1 for s in subs if s.deliver_error(err))


Record = Union[PositionFix, FixError]


def _fix_from_mapping(row: dict) -> PositionFix:
    ts = row.get("ts") or None
    kwargs = {"ts": ts} if ts else {}
    return PositionFix(
        lat=float(row["lat"]),
        lon=float(row["lon"]),
        accuracy_m=float(row["accuracy_m"]),
        **kwargs,
    )


@dataclass
class ReplayFixSource:
    """
    Replay fixes from a CSV file (columns: ts, lat, lon, accuracy_m) or a JSONL
    file (one object per line with the same keys).

    If realtime=True, sleeps the gap between consecutive timestamps
    (multiplied by scale_dt); else yields as fast as possible.
    """
    path: str
    realtime: bool = False
    scale_dt: float = 1.0

    def records(self, stop: Optional[threading.Event] = None) -> Iterator[Record]:
        p = Path(self.path)
        if not p.exists():
            raise FileNotFoundError(f"Fix file not found: {self.path}")
        prev_t = None
        for n, row in enumerate(self._rows(p), start=1):
            if stop is not None and stop.is_set():
                return
            try:
                fix = _fix_from_mapping(row)
            except (KeyError, TypeError, ValueError) as e:
                yield FixError(FixErrorCode.MALFORMED, f"{p.name}:{n}: {e}")
                continue

            if self.realtime:
                t = self._timestamp(fix.ts)
                if prev_t is not None and t is not None:
                    gap = max(0.0, (t - prev_t) * float(self.scale_dt))
                    if stop is not None:
                        if stop.wait(gap):
                            return
                    elif gap > 0:
                        time.sleep(gap)
                prev_t = t if t is not None else prev_t
            yield fix

    def fixes(self) -> Iterator[PositionFix]:
        """Valid fixes only; malformed rows are logged and skipped."""
        for rec in self.records():
            if isinstance(rec, FixError):
                log.warning("Skipping malformed fix row", extra={"extra": {"detail": rec.message}})
                continue
            yield rec

    def subscribe(self, on_fix: FixCallback, on_error: Optional[ErrorCallback] = None) -> Subscription:
        """Deliver the file on a daemon thread until exhausted or cancelled."""
        sub = Subscription(on_fix, on_error)

        def _run() -> None:
            try:
                for rec in self.records(stop=sub.cancelled_event):
                    if isinstance(rec, FixError):
                        sub.deliver_error(rec)
                    else:
                        sub.deliver(rec)
            except OSError as e:
                sub.deliver_error(FixError(FixErrorCode.POSITION_UNAVAILABLE, str(e)))

        sub.worker = threading.Thread(target=_run, name=f"replay:{Path(self.path).name}", daemon=True)
        sub.worker.start()
        return sub

    @staticmethod
    def _timestamp(ts: str) -> Optional[float]:
        try:
            return parse_iso8601(ts).timestamp()
        except ValueError:
            return None

    @staticmethod
    def _rows(p: Path) -> Iterator[dict]:
        if p.suffix.lower() in (".jsonl", ".ndjson", ".json"):
            with p.open("r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        obj = json.loads(line)
                    except ValueError:
                        obj = {}
                    yield obj if isinstance(obj, dict) else {}
        else:
            with p.open(newline="") as f:
                yield from csv.DictReader(f)


def write_fixes_csv(path: str, fixes: List[PositionFix]) -> None:
    """Write fixes to CSV in the replay format."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(CSV_HEADER)
        for fx in fixes:
            w.writerow([fx.ts, f"{fx.lat:.8f}", f"{fx.lon:.8f}", f"{fx.accuracy_m:.3f}"])
