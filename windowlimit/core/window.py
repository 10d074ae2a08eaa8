"""Window boundary arithmetic for the sliding-window limiter.

All values are unix seconds. Boundaries are floored to a multiple of the bucket
precision so every caller using the same precision agrees on bucket identity.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Window:
    """Truncated window boundaries, both inclusive."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def is_valid(self) -> bool:
        return self.length >= 0


def truncate(timestamp: float, precision_seconds: int) -> int:
    """Floor ``timestamp`` to the nearest multiple of ``precision_seconds``."""

    if precision_seconds <= 0:
        raise ValueError("precision_seconds must be > 0")
    return int(timestamp // precision_seconds) * precision_seconds


def compute_window(now: float, window_size_seconds: float, bucket_precision_seconds: int) -> Window:
    """Compute the trailing window that ends at ``now``.

    Args:
        now: Current unix time in seconds.
        window_size_seconds: Lookback duration.
        bucket_precision_seconds: Bucket width used for truncation.

    Returns:
        Window whose ``start`` is ``truncate(now - window)`` and whose ``end``
        is ``truncate(now)``. A negative ``length`` only happens on
        misconfiguration and is rejected by the admission routine.
    """

    return Window(
        start=truncate(now - window_size_seconds, bucket_precision_seconds),
        end=truncate(now, bucket_precision_seconds),
    )
