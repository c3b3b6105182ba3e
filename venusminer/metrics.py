"""Timing helpers for recording durations in milliseconds."""

from __future__ import annotations

import time
from typing import Callable


def since_in_milliseconds(start_time: float) -> float:
    """Milliseconds elapsed since ``start_time``, a ``time.monotonic()`` reading."""
    return (time.monotonic() - start_time) * 1000.0


def timer(record: Callable[[float], object]) -> Callable[[], float]:
    """Start a stopwatch; the returned function records and returns the elapsed milliseconds."""
    start = time.monotonic()

    def stop() -> float:
        elapsed = since_in_milliseconds(start)
        record(elapsed)
        return elapsed

    return stop