"""
Path Reconstruction (Dead Reckoning)
====================================
Converts the ordered route points into 3D coordinates, anchored at the origin
on the first point.

Axis convention (matches a compass/clinometer and downstream 3D tooling):
    x = east-west   (horiz * sin(heading))
    y = up-down     (d * sin(elevation))
    z = north-south (horiz * cos(heading))

Each segment uses the first applicable mode:
    1. HEADING: the segment start point carries a heading.
    2. SCREEN:  plan-view direction from the two screen taps (no vertical part).
    3. LINEAR:  advance along +x.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import logging
import math
from typing import List, Sequence, TYPE_CHECKING

import numpy as np

from pipetrace.config import DEFAULT_SEGMENT_DISTANCE, SCREEN_DIRECTION_THRESHOLD_PX
from pipetrace.model.route import RoutePoint
from pipetrace.utils import deg2rad

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class SegmentMode(StrEnum):
    HEADING = "heading"
    SCREEN = "screen"
    LINEAR = "linear"


@dataclass(frozen=True)
class ReconstructedSegment:
    index: int
    start: tuple[float, float, float]
    end: tuple[float, float, float]
    mode: SegmentMode
    distance: float
    # True when the segment was unmeasured and the rendering default was used
    distance_assumed: bool


class PathReconstructor:
    """Stateless: every call recomputes from the given points."""

    def __init__(
        self,
        default_distance: float = DEFAULT_SEGMENT_DISTANCE,
        screen_threshold: float = SCREEN_DIRECTION_THRESHOLD_PX,
    ) -> None:
        self.default_distance = default_distance
        self.screen_threshold = screen_threshold

    def reconstruct(self, points: Sequence[RoutePoint]) -> npt.NDArray[np.float64]:
        """
        Compute the position of every point.

        Args:
            points: Ordered route points (e.g. a RouteModel snapshot).

        Returns:
            Array of shape (n, 3) with (x, y, z) per point. Row 0 is the origin.
        """
        positions = np.zeros((len(points), 3), dtype=np.float64)
        for segment in self.segments(points):
            positions[segment.index + 1] = segment.end
        return positions

    def segments(self, points: Sequence[RoutePoint]) -> List[ReconstructedSegment]:
        """Per-segment breakdown, including which mode produced each step."""
        result: List[ReconstructedSegment] = []
        x = y = z = 0.0

        for i in range(len(points) - 1):
            p1, p2 = points[i], points[i + 1]
            assumed = p1.distance_to_next is None
            d = self.default_distance if assumed else p1.distance_to_next
            start = (x, y, z)

            if p1.heading is not None:
                mode = SegmentMode.HEADING
                h_rad = deg2rad(p1.heading)
                e_rad = deg2rad(p1.elevation or 0.0)
                horiz = d * math.cos(e_rad)
                x += horiz * math.sin(h_rad)
                z += horiz * math.cos(h_rad)
                y += d * math.sin(e_rad)
            else:
                dx = p2.screen_x - p1.screen_x
                dy = p2.screen_y - p1.screen_y
                screen_dist = math.hypot(dx, dy)
                if screen_dist > self.screen_threshold:
                    # Pixel direction scaled by a metric distance: plan-view approximation
                    mode = SegmentMode.SCREEN
                    x += (dx / screen_dist) * d
                    z += (dy / screen_dist) * d
                else:
                    mode = SegmentMode.LINEAR
                    x += d

            result.append(ReconstructedSegment(
                index=i, start=start, end=(x, y, z), mode=mode,
                distance=d, distance_assumed=assumed,
            ))

        return result


def path_length(positions: npt.NDArray[np.float64]) -> float:
    """Polyline length of reconstructed positions."""
    if len(positions) < 2:
        return 0.0
    return float(np.linalg.norm(np.diff(positions, axis=0), axis=1).sum())
