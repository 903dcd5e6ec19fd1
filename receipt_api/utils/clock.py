"""Time helpers. Services take a ``clock`` callable (epoch seconds) so tests can move time."""
import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], float]

system_clock: Clock = time.time


def iso_from_epoch(ts: float) -> str:
    """Epoch seconds -> ISO-8601 UTC with millisecond precision, e.g. 2026-01-02T03:04:05.678Z"""
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso(clock: Clock = system_clock) -> str:
    return iso_from_epoch(clock())
