"""
Sensor Readings & Fidelity Levels
=================================
Defines the value objects exchanged between the sensor layer and the route.

Classes:
    FidelityLevel: Which directional sensors are available (1 = best).
    DirectionSource: Provenance tag stored on every point.
    SensorReading: Immutable snapshot of the fusion engine state.
    Measurement: Normalized (distance, heading, elevation, source, level) tuple.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, StrEnum
from typing import Any, Dict, Optional

from pipetrace.config import READING_DECIMALS


class FidelityLevel(IntEnum):
    FULL = 1
    COMPASS_ACCEL = 2
    GYRO_ACCEL = 3
    ACCEL_ONLY = 4
    MANUAL = 5

    @staticmethod
    def classify(has_compass: bool, has_gyro: bool, has_accel: bool) -> FidelityLevel:
        """Map sensor presence flags to a level. The first matching row wins."""
        if has_compass and has_gyro and has_accel:
            return FidelityLevel.FULL
        if has_compass and has_accel:
            return FidelityLevel.COMPASS_ACCEL
        if has_gyro and has_accel:
            return FidelityLevel.GYRO_ACCEL
        if has_accel:
            return FidelityLevel.ACCEL_ONLY
        return FidelityLevel.MANUAL

    @property
    def info(self) -> LevelMetadata:
        return LEVEL_METADATA[self]

    @property
    def description(self) -> str:
        return LEVEL_METADATA[self].description

    @staticmethod
    def parse(value: Any) -> Optional[FidelityLevel]:
        """Lenient parse used when loading persisted points."""
        if value is None:
            return None
        try:
            return FidelityLevel(int(value))
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class LevelMetadata:
    description: str
    has_heading: bool
    has_absolute_heading: bool
    has_elevation: bool
    requires_initial_heading: bool = False


# Which reading fields are meaningful at each level
LEVEL_METADATA: Dict[FidelityLevel, LevelMetadata] = {
    FidelityLevel.FULL: LevelMetadata(
        description="Full fusion (compass + gyro + accelerometer)",
        has_heading=True, has_absolute_heading=True, has_elevation=True),
    FidelityLevel.COMPASS_ACCEL: LevelMetadata(
        description="Compass + accelerometer",
        has_heading=True, has_absolute_heading=True, has_elevation=True),
    FidelityLevel.GYRO_ACCEL: LevelMetadata(
        description="Relative heading (gyro + accelerometer)",
        has_heading=True, has_absolute_heading=False, has_elevation=True,
        requires_initial_heading=True),
    FidelityLevel.ACCEL_ONLY: LevelMetadata(
        description="Elevation only (accelerometer)",
        has_heading=False, has_absolute_heading=False, has_elevation=True),
    FidelityLevel.MANUAL: LevelMetadata(
        description="Manual input",
        has_heading=False, has_absolute_heading=False, has_elevation=False),
}


class DirectionSource(StrEnum):
    FUSION = "fusion"
    COMPASS = "compass"
    GYRO = "gyro"
    ACCEL = "accel"
    MANUAL = "manual"
    # AR anchors with a captured compass offset
    AR = "ar"
    # AR anchors whose offset capture timed out: heading relative to session start
    AR_RELATIVE = "ar-relative"

    @staticmethod
    def from_flags(has_compass: bool, has_gyro: bool, has_accel: bool) -> DirectionSource:
        if has_compass and has_gyro:
            return DirectionSource.FUSION
        if has_compass:
            return DirectionSource.COMPASS
        if has_gyro:
            return DirectionSource.GYRO
        if has_accel:
            return DirectionSource.ACCEL
        return DirectionSource.MANUAL

    @staticmethod
    def parse(value: Optional[str]) -> Optional[DirectionSource]:
        """Lenient parse used when loading persisted points."""
        if not value:
            return None
        try:
            return DirectionSource(value)
        except ValueError:
            return None


def _round(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, READING_DECIMALS)


@dataclass(frozen=True)
class SensorReading:
    """Point-in-time snapshot, captured when the camera is frozen or a point is placed."""
    heading: Optional[float]
    elevation: Optional[float]
    source: DirectionSource
    level: FidelityLevel
    accuracy: Optional[float] = None

    @staticmethod
    def capture(
        heading: Optional[float],
        elevation: Optional[float],
        source: DirectionSource,
        level: FidelityLevel,
        accuracy: Optional[float] = None,
        heading_seeded: bool = False,
    ) -> SensorReading:
        """
        Build a reading that only carries the fields valid at `level`.

        A level-3 heading is kept only after it was seeded with an absolute value.
        """
        info = level.info
        if not info.has_heading or (info.requires_initial_heading and not heading_seeded):
            heading = None
        if not info.has_elevation:
            elevation = None
        return SensorReading(
            heading=_round(heading),
            elevation=_round(elevation),
            source=source,
            level=level,
            accuracy=accuracy,
        )

    @property
    def is_absolute(self) -> bool:
        return self.heading is not None and self.level.info.has_absolute_heading


@dataclass(frozen=True)
class Measurement:
    """One segment measurement in the shape the route model consumes."""
    distance: Optional[float]
    heading: Optional[float]
    elevation: Optional[float]
    source: Optional[DirectionSource]
    level: Optional[FidelityLevel]

    @staticmethod
    def from_reading(reading: SensorReading, distance: Optional[float] = None) -> Measurement:
        return Measurement(
            distance=distance,
            heading=reading.heading,
            elevation=reading.elevation,
            source=reading.source,
            level=reading.level,
        )
