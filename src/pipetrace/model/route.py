"""
Route Model (Points, Segments, Calibration)
===========================================
This module owns the authoritative ordered sequence of route points.

Why is this file needed?
------------------------
1. State Management: It holds every point and the pixel calibration in one
   place and enforces the value-range and point-count invariants.
2. Notification: Every successful mutation emits a read-only snapshot of the
   full sequence through a Qt signal. Rendering, export and reconstruction
   only ever read those snapshots.
3. Persistence: `to_dict` / `load_dict` produce and consume the project
   document shape used by the storage layer.

Classes:
    RoutePoint: Frozen snapshot of one point.
    Calibration: Pixel-to-meter scale from one reference segment.
    OperationResult: Success/failure report returned by every mutation.
    RouteModel: The container class.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from PySide6.QtCore import QObject, Signal

from pipetrace.config import MAX_POINTS, MAX_SEGMENT_DISTANCE, MEMO_MAX_LENGTH
from pipetrace.model.errors import (
    CountExceeded,
    InvalidDistance,
    InvalidIndex,
    InvalidMemo,
    InvalidSegment,
    PointNotFound,
    ValidationError,
)
from pipetrace.model.readings import DirectionSource, FidelityLevel
from pipetrace.utils import clamp, pixel_distance, total_route_length, wrap360

logger = logging.getLogger(__name__)

# Sentinel for "field not supplied" in partial updates (None is a valid value)
_UNSET: Any = object()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RoutePoint:
    """
    One tap/anchor event.

    `distance_to_next`, `heading` and `elevation` describe the segment from this
    point to its successor; they are meaningless on the last point.
    """
    id: int
    screen_x: float = 0.0
    screen_y: float = 0.0
    memo: str = ""
    created_at: str = field(default_factory=_now_iso)
    distance_to_next: Optional[float] = None
    heading: Optional[float] = None
    elevation: Optional[float] = None
    direction_source: Optional[DirectionSource] = None
    sensor_level: Optional[FidelityLevel] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "screenX": self.screen_x,
            "screenY": self.screen_y,
            "memo": self.memo,
            "createdAt": self.created_at,
            "distanceToNext": self.distance_to_next,
            "heading": self.heading,
            "elevation": self.elevation,
            "directionSource": self.direction_source.value if self.direction_source else None,
            "sensorLevel": int(self.sensor_level) if self.sensor_level is not None else None,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> RoutePoint:
        """Every optional field falls back to its null-safe form."""
        return RoutePoint(
            id=int(data["id"]),
            screen_x=float(data.get("screenX") or 0.0),
            screen_y=float(data.get("screenY") or 0.0),
            memo=str(data.get("memo") or ""),
            created_at=data.get("createdAt") or _now_iso(),
            distance_to_next=_optional_float(data.get("distanceToNext")),
            heading=_heading(data.get("heading")),
            elevation=_elevation(data.get("elevation")),
            direction_source=DirectionSource.parse(data.get("directionSource")),
            sensor_level=FidelityLevel.parse(data.get("sensorLevel")),
        )


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _heading(value: Optional[float]) -> Optional[float]:
    return None if value is None else wrap360(float(value))


def _elevation(value: Optional[float]) -> Optional[float]:
    return None if value is None else clamp(float(value), -90.0, 90.0)


@dataclass(frozen=True)
class Calibration:
    pixels_per_meter: Optional[float] = None
    reference_segment: Optional[int] = None

    @property
    def is_calibrated(self) -> bool:
        return self.pixels_per_meter is not None

    def to_dict(self) -> Dict[str, Any]:
        return {"pixelsPerMeter": self.pixels_per_meter, "referenceSegment": self.reference_segment}

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> Calibration:
        if not data:
            return Calibration()
        ppm = data.get("pixelsPerMeter")
        ref = data.get("referenceSegment")
        # Non-positive scales are treated as uncalibrated
        if ppm is None or float(ppm) <= 0.0:
            return Calibration()
        return Calibration(
            pixels_per_meter=float(ppm),
            reference_segment=int(ref) if ref is not None else None,
        )


@dataclass(frozen=True)
class OperationResult:
    success: bool
    message: str = ""
    error: Optional[ValidationError] = None
    point: Optional[RoutePoint] = None

    def __bool__(self) -> bool:
        return self.success

    @staticmethod
    def ok(message: str = "", point: Optional[RoutePoint] = None) -> OperationResult:
        return OperationResult(success=True, message=message, point=point)

    @staticmethod
    def fail(error: ValidationError) -> OperationResult:
        return OperationResult(success=False, message=str(error), error=error)


class RouteModel(QObject):
    """Ordered route points plus calibration, with signals for downstream sync."""
    points_changed = Signal(object)

    def __init__(
        self,
        max_points: int = MAX_POINTS,
        memo_max_length: int = MEMO_MAX_LENGTH,
        max_distance: float = MAX_SEGMENT_DISTANCE,
    ) -> None:
        super().__init__()
        self.max_points = max_points
        self.memo_max_length = memo_max_length
        self.max_distance = max_distance

        self._points: List[RoutePoint] = []
        self._next_id = 1
        self._calibration = Calibration()

    # ---- Observer ----
    def subscribe(self, callback: Callable[[Tuple[RoutePoint, ...]], None]) -> Callable[[], None]:
        """Register a listener for full snapshots. Returns an unsubscribe function."""
        self.points_changed.connect(callback)
        connected = [True]

        def unsubscribe() -> None:
            if connected[0]:
                connected[0] = False
                self.points_changed.disconnect(callback)

        return unsubscribe

    def _notify(self) -> None:
        self.points_changed.emit(self.points)

    # ---- Read access ----
    @property
    def points(self) -> Tuple[RoutePoint, ...]:
        return tuple(self._points)

    @property
    def calibration(self) -> Calibration:
        return self._calibration

    @property
    def count(self) -> int:
        return len(self._points)

    @property
    def next_id(self) -> int:
        return self._next_id

    def __len__(self) -> int:
        return len(self._points)

    def get_point(self, point_id: int) -> Optional[RoutePoint]:
        return next((p for p in self._points if p.id == point_id), None)

    def get_total_length(self) -> float:
        return total_route_length(p.distance_to_next for p in self._points)

    # ---- Validation ----
    def _validate_memo(self, memo: Any) -> str:
        if not isinstance(memo, str):
            raise InvalidMemo("Memo must be a string.")
        if len(memo) > self.memo_max_length:
            raise InvalidMemo(f"Memo must be at most {self.memo_max_length} characters.")
        return memo.strip()

    def _validate_distance(self, distance: Any) -> float:
        try:
            value = float(distance)
        except (TypeError, ValueError):
            raise InvalidDistance("Distance must be a number.") from None
        if value != value:  # NaN
            raise InvalidDistance("Distance must be a number.")
        if value < 0:
            raise InvalidDistance("Distance must be 0 or greater.")
        if value > self.max_distance:
            raise InvalidDistance(f"Distance is too large (max {self.max_distance:g}).")
        return value

    def _check_segment(self, index: int) -> None:
        if index < 0 or index >= len(self._points) - 1:
            raise InvalidSegment(f"Invalid segment index: {index}.")

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= len(self._points):
            raise InvalidIndex(f"Invalid point index: {index}.")

    # ---- Mutations ----
    def add_point(self, x: float, y: float, memo: str = "") -> OperationResult:
        try:
            if len(self._points) >= self.max_points:
                raise CountExceeded(f"At most {self.max_points} points are allowed.")
            clean_memo = self._validate_memo(memo)
        except ValidationError as e:
            logger.debug(f"add_point rejected: {e}")
            return OperationResult.fail(e)

        point = RoutePoint(id=self._next_id, screen_x=float(x), screen_y=float(y), memo=clean_memo)
        self._next_id += 1
        self._points.append(point)
        logger.debug(f"Added point {point.id} at ({x}, {y}).")
        self._notify()
        return OperationResult.ok(point=point)

    def set_segment_distance(self, index: int, distance: Optional[float]) -> OperationResult:
        """Set (or clear with None) the measured distance of segment `index`."""
        try:
            # Range check first: a negative distance is a distance error for any index
            value = None if distance is None else self._validate_distance(distance)
            self._check_segment(index)
        except ValidationError as e:
            return OperationResult.fail(e)

        self._points[index] = replace(self._points[index], distance_to_next=value)
        self._notify()
        return OperationResult.ok(point=self._points[index])

    def set_point_direction(
        self,
        index: int,
        heading: Optional[float],
        elevation: Optional[float],
        source: Optional[DirectionSource],
        level: Optional[FidelityLevel],
    ) -> OperationResult:
        """Overwrite all four direction fields at once. Heading wraps to [0, 360), elevation clamps to [-90, 90]."""
        try:
            self._check_index(index)
        except ValidationError as e:
            return OperationResult.fail(e)

        self._points[index] = replace(
            self._points[index],
            heading=_heading(heading),
            elevation=_elevation(elevation),
            direction_source=DirectionSource(source) if source is not None else None,
            sensor_level=FidelityLevel(level) if level is not None else None,
        )
        self._notify()
        return OperationResult.ok(point=self._points[index])

    def update_memo(self, point_id: int, memo: str) -> OperationResult:
        try:
            index = self._index_of(point_id)
            clean_memo = self._validate_memo(memo)
        except ValidationError as e:
            return OperationResult.fail(e)

        self._points[index] = replace(self._points[index], memo=clean_memo)
        self._notify()
        return OperationResult.ok(point=self._points[index])

    def update_point_by_index(
        self,
        index: int,
        *,
        memo: Optional[str] = _UNSET,
        distance: Optional[float] = _UNSET,
        heading: Optional[float] = _UNSET,
        elevation: Optional[float] = _UNSET,
        direction_source: Optional[DirectionSource] = _UNSET,
    ) -> OperationResult:
        """
        Selective edit of an existing point. Only supplied fields change.

        A distance on the terminal point is ignored (there is no next segment).
        """
        try:
            self._check_index(index)
            changes: Dict[str, Any] = {}
            if memo is not _UNSET:
                changes["memo"] = self._validate_memo(memo)
            if distance is not _UNSET and index < len(self._points) - 1:
                changes["distance_to_next"] = None if distance is None else self._validate_distance(distance)
            if heading is not _UNSET:
                changes["heading"] = _heading(heading)
            if elevation is not _UNSET:
                changes["elevation"] = _elevation(elevation)
            if direction_source is not _UNSET:
                changes["direction_source"] = DirectionSource(direction_source) if direction_source else None
        except ValidationError as e:
            return OperationResult.fail(e)

        self._points[index] = replace(self._points[index], **changes)
        self._notify()
        return OperationResult.ok(point=self._points[index])

    def undo_last_point(self) -> OperationResult:
        if not self._points:
            return OperationResult(success=False, message="There is no point to undo.")

        removed = self._points.pop()
        # The predecessor's segment pointed at the removed point
        if self._points:
            self._points[-1] = replace(self._points[-1], distance_to_next=None)
        logger.debug(f"Undo removed point {removed.id}.")
        self._notify()
        return OperationResult.ok(point=removed)

    def remove_point(self, point_id: int) -> OperationResult:
        try:
            index = self._index_of(point_id)
        except ValidationError as e:
            return OperationResult.fail(e)

        removed = self._points.pop(index)
        if index > 0:
            self._points[index - 1] = replace(self._points[index - 1], distance_to_next=None)
        self._notify()
        return OperationResult.ok(point=removed)

    def _index_of(self, point_id: int) -> int:
        for i, p in enumerate(self._points):
            if p.id == point_id:
                return i
        raise PointNotFound(f"Point {point_id} not found.")

    # ---- Calibration ----
    def _segment_pixels(self, index: int) -> float:
        p1, p2 = self._points[index], self._points[index + 1]
        return pixel_distance(p1.screen_x, p1.screen_y, p2.screen_x, p2.screen_y)

    def estimate_distance(self, index: int) -> Optional[float]:
        """Pixel length of segment `index` in meters, or None when uncalibrated."""
        ppm = self._calibration.pixels_per_meter
        if not ppm:
            return None
        if index < 0 or index >= len(self._points) - 1:
            return None
        return self._segment_pixels(index) / ppm

    def calibrate(self, segment_index: int, real_distance: float) -> bool:
        """
        Replace the calibration from one reference segment.

        Invalid input leaves the calibration untouched and returns False.
        """
        if segment_index < 0 or segment_index >= len(self._points) - 1:
            return False
        if real_distance is None or real_distance <= 0:
            return False
        px = self._segment_pixels(segment_index)
        if px <= 0:
            logger.warning(f"Segment {segment_index} has zero pixel length, calibration skipped.")
            return False

        self._calibration = Calibration(
            pixels_per_meter=px / real_distance,
            reference_segment=segment_index,
        )
        logger.info(f"Calibrated: {self._calibration.pixels_per_meter:.3f} px/m (segment {segment_index}).")
        return True

    # ---- Bulk ----
    def load_points(self, points: List[RoutePoint], calibration: Optional[Calibration] = None) -> None:
        """Replace everything. The id counter continues after the highest loaded id."""
        self._points = list(points)
        self._next_id = max((p.id for p in self._points), default=0) + 1
        if calibration is not None:
            self._calibration = calibration
        logger.info(f"Loaded {len(self._points)} points.")
        self._notify()

    def load_dict(self, data: Dict[str, Any]) -> None:
        points = [RoutePoint.from_dict(p) for p in data.get("points", [])]
        calibration = Calibration.from_dict(data["calibration"]) if "calibration" in data else None
        self.load_points(points, calibration)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calibration": self._calibration.to_dict(),
            "points": [p.to_dict() for p in self._points],
        }

    def clear(self) -> None:
        self._points = []
        self._next_id = 1
        self._calibration = Calibration()
        logger.info("Route has been reset.")
        self._notify()
