"""
External Measurement Adapter (AR anchors)
=========================================
When 3D positions come directly from an AR tracking session, this adapter
derives the same (distance, heading, elevation, source) tuple the route model
stores for compass-based measurements.

Tracking-space axes are not aligned to magnetic north, so a compass offset
must be captured once before the session starts. If that capture times out
the offset is 0 and every measurement is tagged `ar-relative`.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from pipetrace.config import COMPASS_OFFSET_TIMEOUT_SECONDS
from pipetrace.model.geometry_primitives import Vector
from pipetrace.model.readings import DirectionSource, FidelityLevel, Measurement
from pipetrace.model.route import OperationResult, RouteModel
from pipetrace.utils import rad2deg, wrap360

logger = logging.getLogger(__name__)

PositionLike = Union[Vector, Sequence[float]]
CompassReader = Callable[[], Awaitable[Optional[float]]]


def _as_vector(position: PositionLike) -> Vector:
    return position if isinstance(position, Vector) else Vector.from_sequence(position)


def distance_between(pos_a: PositionLike, pos_b: PositionLike) -> float:
    """Euclidean 3D distance."""
    return _as_vector(pos_a).distance_to(_as_vector(pos_b))


def direction_between(
    pos_a: PositionLike,
    pos_b: PositionLike,
    compass_offset: float = 0.0,
) -> Tuple[float, float]:
    """
    Heading and elevation (degrees) of the step from `pos_a` to `pos_b`.

    heading = atan2(dx, dz) rotated by `compass_offset`, wrapped to [0, 360).
    elevation = atan2(dy, horizontal run).
    """
    delta = _as_vector(pos_b) - _as_vector(pos_a)
    heading = wrap360(rad2deg(math.atan2(delta.x, delta.z)) + compass_offset)
    elevation = rad2deg(math.atan2(delta.y, delta.horizontal_magnitude))
    return heading, elevation


class ExternalMeasurementAdapter:
    """Ordered AR anchor positions plus the one-time compass offset."""

    def __init__(
        self,
        timeout_seconds: float = COMPASS_OFFSET_TIMEOUT_SECONDS,
        scale_factor: float = 1.0,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.scale_factor = scale_factor
        self.compass_offset = 0.0
        self.offset_captured = False
        self._anchors: List[Vector] = []

    # ---- Compass offset ----
    async def capture_compass_offset(self, reader: CompassReader) -> float:
        """
        Wait (bounded) for one compass heading and keep it as the offset.

        `reader` resolves to a CW-from-north heading or None. On timeout,
        None or a reader failure the offset is 0 and headings are relative.
        """
        heading: Optional[float] = None
        try:
            heading = await asyncio.wait_for(reader(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Compass heading unavailable (timeout), using offset=0")
        except Exception as e:
            logger.warning(f"Compass heading unavailable ({e}), using offset=0")

        if heading is None:
            self.compass_offset = 0.0
            self.offset_captured = False
        else:
            self.compass_offset = wrap360(heading)
            self.offset_captured = True
            logger.info(f"Compass offset captured: {self.compass_offset:.1f} deg")
        return self.compass_offset

    def set_compass_offset(self, degrees: Optional[float]) -> None:
        if degrees is None:
            self.compass_offset, self.offset_captured = 0.0, False
        else:
            self.compass_offset, self.offset_captured = wrap360(degrees), True

    @property
    def source(self) -> DirectionSource:
        return DirectionSource.AR if self.offset_captured else DirectionSource.AR_RELATIVE

    # ---- Anchors ----
    def add_anchor(self, position: PositionLike) -> int:
        """Append an anchor pose translation; returns its index."""
        self._anchors.append(_as_vector(position))
        return len(self._anchors) - 1

    def undo_anchor(self) -> bool:
        if not self._anchors:
            return False
        self._anchors.pop()
        return True

    def clear_anchors(self) -> None:
        self._anchors.clear()

    @property
    def anchor_count(self) -> int:
        return len(self._anchors)

    @property
    def anchors(self) -> Tuple[Vector, ...]:
        return tuple(self._anchors)

    def _segment(self, index: int) -> Optional[Tuple[Vector, Vector]]:
        if index < 0 or index >= len(self._anchors) - 1:
            return None
        return self._anchors[index], self._anchors[index + 1]

    def anchor_distance(self, index: int) -> Optional[float]:
        """Real-world distance from anchor `index` to the next one, scaled."""
        segment = self._segment(index)
        if segment is None:
            return None
        return distance_between(*segment) * self.scale_factor

    def anchor_direction(self, index: int) -> Optional[Tuple[float, float]]:
        segment = self._segment(index)
        if segment is None:
            return None
        return direction_between(*segment, compass_offset=self.compass_offset)

    def measurement(self, index: int) -> Optional[Measurement]:
        """The segment in route-model shape, or None for an invalid index."""
        segment = self._segment(index)
        if segment is None:
            return None
        heading, elevation = direction_between(*segment, compass_offset=self.compass_offset)
        return Measurement(
            distance=distance_between(*segment) * self.scale_factor,
            heading=heading,
            elevation=elevation,
            source=self.source,
            # AR tracking fuses all device sensors
            level=FidelityLevel.FULL if self.offset_captured else FidelityLevel.GYRO_ACCEL,
        )

    def apply_to_route(
        self,
        route: RouteModel,
        index: int,
        distance_override: Optional[float] = None,
        route_index: Optional[int] = None,
    ) -> OperationResult:
        """
        Write anchor segment `index` into the route (distance first, then direction).

        `route_index` defaults to `index`; it differs when the AR session started
        on a route that already had points.
        """
        m = self.measurement(index)
        if m is None:
            return OperationResult(success=False, message=f"No AR segment {index}.")
        target = index if route_index is None else route_index
        distance = distance_override if distance_override is not None else m.distance
        result = route.set_segment_distance(target, distance)
        if not result:
            return result
        return route.set_point_direction(target, m.heading, m.elevation, m.source, m.level)
