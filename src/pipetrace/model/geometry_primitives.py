"""
Geometric Primitives for AR anchor positions.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence
import math

@dataclass(frozen=True)
class Vector:
    """
    A vector (or position) in 3D space.

    Tracking space convention: x = east-west, y = up, z = north-south.
    """
    x: float
    y: float
    z: float = 0.0

    def __sub__(self, other: Vector) -> Vector:
        return Vector(self.x - other.x, self.y - other.y, self.z - other.z)

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x**2 + self.y**2 + self.z**2)

    @property
    def horizontal_magnitude(self) -> float:
        """Length of the projection onto the horizontal (x/z) plane."""
        return math.sqrt(self.x**2 + self.z**2)

    def distance_to(self, other: Vector) -> float:
        return (other - self).magnitude

    @staticmethod
    def from_sequence(values: Sequence[float]) -> Vector:
        """Build from any (x, y, z) sequence, e.g. a numpy row or an anchor pose translation."""
        if len(values) != 3:
            raise ValueError(f"Expected 3 components, got {len(values)}.")
        return Vector(float(values[0]), float(values[1]), float(values[2]))
