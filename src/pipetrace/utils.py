from __future__ import annotations

import math
from typing import Iterable, Optional

from pipetrace.config import DISTANCE_PRECISION


def wrap360(degrees: float) -> float:
    """Wrap an angle into [0, 360)."""
    wrapped = math.fmod(degrees, 360.0)
    if wrapped < 0.0:
        wrapped += 360.0
    # fmod(-1e-15, 360) + 360 rounds to 360.0
    return 0.0 if wrapped >= 360.0 else wrapped

def wrap180(degrees: float) -> float:
    """Wrap an angle into [-180, 180)."""
    return wrap360(degrees + 180.0) - 180.0

def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))

def deg2rad(degrees: float) -> float:
    return degrees * math.pi / 180

def rad2deg(radians: float) -> float:
    return radians * 180 / math.pi

def pixel_distance(x1: float, y1: float, x2: float, y2: float) -> float:
    """2D Euclidean distance between two screen taps (pixels)."""
    return math.hypot(x2 - x1, y2 - y1)

def total_route_length(distances: Iterable[Optional[float]]) -> float:
    """Sum of all measured segment distances, skipping unmeasured ones."""
    return sum(d for d in distances if d is not None)

def format_distance(value: float, digits: int = DISTANCE_PRECISION) -> str:
    return f"{value:.{digits}f}"
