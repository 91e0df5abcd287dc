"""Interpolation helpers shared by the motion and typography math.

All functions are pure and operate on plain floats so frame rendering stays
deterministic.

Usage:
    from lyricframe.utils.interpolation import progress_between

    # 0..1 progress of t through [start, end), clamped
    p = progress_between(9.8, 8.5, 10.0)
"""

import math


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def progress_between(value: float, start: float, end: float) -> float:
    """Clamped 0..1 progress of value through [start, end].

    A zero or negative span is treated as an instantaneous step at ``start``.
    """
    span = end - start
    if span <= 0:
        return 1.0 if value >= start else 0.0
    return clamp((value - start) / span)


def pulse(t: float) -> float:
    """0 -> 1 -> 0 bump over t in [0, 1]."""
    return math.sin(math.pi * clamp(t))
