"""Relative-angle presets for manual direction entry."""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Dict, Optional, Tuple

from pipetrace.utils import wrap360


class DirectionPreset(StrEnum):
    STRAIGHT = "straight"
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"


@dataclass(frozen=True)
class PresetDelta:
    d_heading: float
    elevation: float


PRESETS: Dict[DirectionPreset, PresetDelta] = {
    DirectionPreset.STRAIGHT: PresetDelta(d_heading=0.0, elevation=0.0),
    DirectionPreset.LEFT: PresetDelta(d_heading=-90.0, elevation=0.0),
    DirectionPreset.RIGHT: PresetDelta(d_heading=90.0, elevation=0.0),
    DirectionPreset.UP: PresetDelta(d_heading=0.0, elevation=45.0),
    DirectionPreset.DOWN: PresetDelta(d_heading=0.0, elevation=-45.0),
}


def resolve_manual_direction(
    previous_heading: float,
    preset: Optional[DirectionPreset] = None,
    angle: Optional[float] = None,
) -> Tuple[float, float]:
    """
    Heading and elevation for a manually entered segment.

    The preset turns relative to `previous_heading`; an explicit absolute
    `angle` overrides the preset heading but keeps its elevation.
    """
    delta = PRESETS[DirectionPreset(preset) if preset else DirectionPreset.STRAIGHT]
    heading = wrap360(previous_heading + delta.d_heading)
    if angle is not None:
        heading = wrap360(angle)
    return heading, delta.elevation
