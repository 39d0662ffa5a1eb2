"""
Measurement Session
===================
Headless orchestration of one survey: routes tap, anchor and manual-entry
events into the route model.

Snapshot mode:
    freeze() -> tap(x, y) -> confirm_segment(...)
    The reading captured at freeze time is applied to the segment start point.
    A missing distance is estimated from the pixel calibration, and the first
    user-entered distance calibrates the route.

AR mode:
    place_anchor(position) adds a point and, from the second anchor on,
    writes the derived distance and direction of the previous segment.
"""
from __future__ import annotations

from enum import StrEnum
import logging
from typing import Optional, TYPE_CHECKING

from pipetrace.controller.ar_adapter import ExternalMeasurementAdapter, PositionLike
from pipetrace.controller.manual_direction import DirectionPreset, resolve_manual_direction
from pipetrace.controller.reconstruction import PathReconstructor
from pipetrace.controller.sensor_fusion import SensorFusionEngine, SensorStatus
from pipetrace.model.io import IOManager
from pipetrace.model.readings import DirectionSource, FidelityLevel, Measurement, SensorReading
from pipetrace.model.route import OperationResult, RouteModel
from pipetrace.model.state import ProjectState

if TYPE_CHECKING:
    import numpy as np
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class DirectionMode(StrEnum):
    NONE = "none"
    SENSOR = "sensor"
    MANUAL = "manual"


class MeasurementSession:

    def __init__(
        self,
        route: RouteModel,
        engine: Optional[SensorFusionEngine] = None,
        ar_adapter: Optional[ExternalMeasurementAdapter] = None,
    ) -> None:
        self.route = route
        self.engine = engine
        self.ar_adapter = ar_adapter
        self.reconstructor = PathReconstructor()

        self.direction_mode = DirectionMode.NONE
        self.last_heading = 0.0  # running heading for manual presets
        self.frozen = False
        self._snapshot: Optional[SensorReading] = None
        self._pending_segment: Optional[int] = None

    # ---- Direction mode ----
    async def enable_sensors(self, initial_heading: Optional[float] = None) -> SensorStatus:
        """Initialize the engine; level 5 falls back to manual entry."""
        if self.engine is None:
            self.engine = SensorFusionEngine()

        status = await self.engine.initialize()
        if status.requires_manual_input:
            logger.warning("Sensors unavailable, switching to manual direction input.")
            self.direction_mode = DirectionMode.MANUAL
            return status

        self.direction_mode = DirectionMode.SENSOR
        if status.requires_initial_heading:
            if initial_heading is None:
                logger.warning("Level 3 without an initial heading: headings stay unset.")
            else:
                self.engine.set_initial_heading(initial_heading)
                self.last_heading = initial_heading
        return status

    def use_manual_direction(self) -> None:
        self.direction_mode = DirectionMode.MANUAL

    def close(self) -> None:
        if self.engine is not None:
            self.engine.teardown()

    @property
    def sensor_level(self) -> FidelityLevel:
        return self.engine.level if self.engine is not None else FidelityLevel.MANUAL

    # ---- Snapshot mode ----
    def freeze(self) -> Optional[SensorReading]:
        """Freeze the camera frame; in sensor mode the current reading is kept."""
        self.frozen = True
        if self.direction_mode == DirectionMode.SENSOR and self.engine is not None:
            self._snapshot = self.engine.capture_reading()
        return self._snapshot

    def resume(self) -> None:
        self.frozen = False
        self._snapshot = None

    @property
    def pending_segment(self) -> Optional[int]:
        return self._pending_segment

    def tap(self, x: float, y: float, memo: str = "") -> OperationResult:
        result = self.route.add_point(x, y, memo)
        if result and self.route.count >= 2:
            self._pending_segment = self.route.count - 2
        return result

    def confirm_segment(
        self,
        distance: Optional[float] = None,
        preset: Optional[DirectionPreset] = None,
        angle: Optional[float] = None,
        memo: str = "",
    ) -> OperationResult:
        """Finish the segment that ends at the most recent tap."""
        seg = self._pending_segment
        if seg is None:
            return OperationResult(success=False, message="No segment is waiting for a measurement.")

        is_first = seg == 0 and not self.route.calibration.is_calibrated
        entered = distance is not None
        if not entered:
            distance = self.route.estimate_distance(seg)

        if distance is not None:
            result = self.route.set_segment_distance(seg, distance)
            if not result:
                return result
            if entered and is_first:
                self.route.calibrate(seg, distance)

        measurement = self._collect_direction(preset, angle)
        if measurement is not None and measurement.heading is not None:
            self.route.set_point_direction(
                seg,
                measurement.heading,
                measurement.elevation or 0.0,
                measurement.source or DirectionSource.MANUAL,
                measurement.level,
            )
            self.last_heading = measurement.heading

        if memo:
            self.route.update_memo(self.route.points[-1].id, memo)

        self._pending_segment = None
        self.resume()
        return OperationResult.ok(point=self.route.points[seg])

    def _collect_direction(
        self,
        preset: Optional[DirectionPreset],
        angle: Optional[float],
    ) -> Optional[Measurement]:
        if self.direction_mode == DirectionMode.SENSOR and self.engine is not None:
            reading = self._snapshot or self.engine.capture_reading()
            return Measurement.from_reading(reading)
        if self.direction_mode == DirectionMode.MANUAL and (preset is not None or angle is not None):
            heading, elevation = resolve_manual_direction(self.last_heading, preset, angle)
            return Measurement(
                distance=None, heading=heading, elevation=elevation,
                source=DirectionSource.MANUAL, level=self.sensor_level,
            )
        return None

    def recalibrate(self, real_distance: float) -> bool:
        """Re-derive the scale from segment 0 and store the distance on it."""
        if not self.route.calibrate(0, real_distance):
            return False
        self.route.set_segment_distance(0, real_distance)
        return True

    # ---- AR mode ----
    def place_anchor(
        self,
        position: PositionLike,
        distance_override: Optional[float] = None,
        memo: str = "",
    ) -> OperationResult:
        if self.ar_adapter is None:
            self.ar_adapter = ExternalMeasurementAdapter()

        result = self.route.add_point(0.0, 0.0, memo)
        if not result:
            return result
        anchor_index = self.ar_adapter.add_anchor(position)
        if anchor_index >= 1:
            applied = self.ar_adapter.apply_to_route(
                self.route, anchor_index - 1, distance_override, route_index=self.route.count - 2
            )
            if not applied:
                logger.warning(f"AR segment {anchor_index - 1} not stored: {applied.message}")
        return result

    # ---- Output ----
    def positions(self) -> npt.NDArray[np.float64]:
        return self.reconstructor.reconstruct(self.route.points)

    def save(self, state: ProjectState, filepath: str) -> None:
        """Write the project with the reconstructed positions of its route."""
        positions = self.reconstructor.reconstruct(state.route.points)
        IOManager.save_project(state, filepath, positions=positions)
