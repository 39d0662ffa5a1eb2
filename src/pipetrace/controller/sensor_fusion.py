"""
Sensor Fusion Engine
====================
Classifies the available motion/orientation sensors into a fidelity level and
keeps a continuously fused heading and elevation of the device's facing
direction.

Why is this file needed?
------------------------
1. Fusion: A complementary filter blends the compass (absolute, noisy) with
   gyro integration (precise, drifting). The gyro dominates short-term, the
   compass corrects drift.
2. Degradation: Missing APIs, denied permissions and hardware failures never
   raise. They lower the fidelity level and the caller re-checks it.
3. Ownership: All listener state lives in one engine instance that is
   explicitly started and torn down, so several engines can coexist.

Classes:
    SensorBackend: Protocol for the device-event source.
    NullBackend: Backend without any sensors (always level 5).
    FusionState: The engine's internal running state.
    SensorStatus: Result of `initialize()`.
    SensorFusionEngine: The engine.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass
import functools
import logging
import math
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence

from PySide6.QtCore import QObject, Signal

from pipetrace.config import FILTER_ALPHA, SENSOR_SETTLE_SECONDS
from pipetrace.model.errors import SensorUnavailable
from pipetrace.model.readings import DirectionSource, FidelityLevel, SensorReading
from pipetrace.utils import clamp, rad2deg, wrap180, wrap360

logger = logging.getLogger(__name__)


class SensorBackend(Protocol):
    """Source of raw device events (browser bridge, serial IMU, replay file...)."""

    async def request_permission(self) -> bool:
        """Return False when the user denies access. May raise SensorUnavailable."""
        ...

    def start(self, engine: SensorFusionEngine) -> None:
        """Begin forwarding device events to the engine's `on_*` handlers."""
        ...

    def stop(self) -> None:
        ...


class NullBackend:
    """No sensor APIs at all."""

    async def request_permission(self) -> bool:
        return False

    def start(self, engine: SensorFusionEngine) -> None:
        pass

    def stop(self) -> None:
        pass


@dataclass
class FusionState:
    heading: Optional[float] = None        # fused, 0-360 CW from north
    gyro_heading: Optional[float] = None   # filter-propagated
    elevation: Optional[float] = None      # -90..+90, positive = up
    has_compass: bool = False
    has_gyro: bool = False
    has_accel: bool = False
    compass_accuracy: Optional[float] = None
    heading_seeded: bool = False
    last_gyro_time: Optional[float] = None

    @property
    def derived_level(self) -> FidelityLevel:
        return FidelityLevel.classify(self.has_compass, self.has_gyro, self.has_accel)

    @property
    def source(self) -> DirectionSource:
        return DirectionSource.from_flags(self.has_compass, self.has_gyro, self.has_accel)


@dataclass(frozen=True)
class SensorStatus:
    level: FidelityLevel
    description: str

    @property
    def requires_manual_input(self) -> bool:
        return self.level >= FidelityLevel.MANUAL

    @property
    def requires_initial_heading(self) -> bool:
        return self.level.info.requires_initial_heading


def _while_listening(fn: Callable) -> Callable:
    """Device events are dropped unless the engine is listening."""
    @functools.wraps(fn)
    def wrapper(self: SensorFusionEngine, *args: Any, **kwargs: Any) -> None:
        if self._listening:
            fn(self, *args, **kwargs)
    return wrapper


class SensorFusionEngine(QObject):
    """Complementary-filter heading fusion with a five-level fallback."""
    reading_changed = Signal(object)

    def __init__(
        self,
        backend: Optional[SensorBackend] = None,
        alpha: float = FILTER_ALPHA,
        settle_seconds: float = SENSOR_SETTLE_SECONDS,
    ) -> None:
        super().__init__()
        self._backend: SensorBackend = backend if backend is not None else NullBackend()
        self.alpha = alpha
        self.settle_seconds = settle_seconds

        self.state = FusionState()
        self._level = FidelityLevel.MANUAL
        self._listening = False
        self._classified = False
        self._permission_granted = False
        # Bumped on teardown so late async results are discarded
        self._generation = 0
        self._subscribers: List[Callable[[Dict[str, Any]], None]] = []

    # ---- Lifecycle ----
    async def initialize(self) -> SensorStatus:
        """
        Request permission, start listening and classify sensors after the settle window.

        Must be called from a user-initiated action on platforms that gate
        motion sensors behind a prompt. Never raises.
        """
        generation = self._generation
        granted = await self._request_permission()
        if generation != self._generation:
            logger.info("Sensor: permission resolved after teardown, discarded.")
            return self._status(FidelityLevel.MANUAL)

        self._permission_granted = granted
        if granted:
            self._start_listening()

        # Allow at least one reading cycle from each sensor
        await asyncio.sleep(self.settle_seconds)
        if generation != self._generation:
            return self._status(FidelityLevel.MANUAL)

        self._level = self.state.derived_level
        self._classified = True
        logger.info(f"Sensors: level {int(self._level)} - {self._level.description}")
        return self._status(self._level)

    async def _request_permission(self) -> bool:
        try:
            granted = bool(await self._backend.request_permission())
        except SensorUnavailable as e:
            logger.warning(f"Sensor: unavailable: {e}")
            return False
        except Exception as e:
            logger.warning(f"Sensor: permission error: {e}")
            return False
        if not granted:
            logger.warning("Sensor: permission denied")
        return granted

    def _start_listening(self) -> None:
        self._listening = True
        try:
            self._backend.start(self)
        except Exception as e:
            logger.warning(f"Sensor: could not start listening: {e}")
            self._listening = False

    def teardown(self) -> None:
        """Stop all sensor listening and drop the fusion state. Idempotent."""
        self._generation += 1
        was_listening = self._listening
        self._listening = False
        if was_listening:
            try:
                self._backend.stop()
            except Exception as e:
                logger.warning(f"Sensor: error while stopping backend: {e}")
        for callback in list(self._subscribers):
            self._disconnect(callback)
        self.state = FusionState()
        self._level = FidelityLevel.MANUAL
        self._classified = False
        self._permission_granted = False
        if was_listening:
            logger.info("Sensors torn down.")

    def _status(self, level: FidelityLevel) -> SensorStatus:
        return SensorStatus(level=level, description=level.description)

    # ---- Observer ----
    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        """Live {heading, elevation, level} updates for display only."""
        self.reading_changed.connect(callback)
        self._subscribers.append(callback)
        return lambda: self._disconnect(callback)

    def _disconnect(self, callback: Callable) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)
            self.reading_changed.disconnect(callback)

    def _notify(self) -> None:
        if not self._listening:
            return
        self.reading_changed.emit({
            "heading": self.state.heading,
            "elevation": self.state.elevation,
            "level": self._level,
        })

    # ---- Raw device events ----
    @contextmanager
    def _reading(self, sensor: str) -> Iterator[None]:
        """
        Scope of one sensor's share of an event.

        A failure inside is logged and marks `sensor` as absent instead of
        propagating. Once sensors are classified the level degrades with it.
        """
        try:
            yield
        except Exception as e:
            logger.warning(f"Sensor: {sensor} read failed, marking unavailable: {e}")
            setattr(self.state, f"has_{sensor}", False)
            if self._classified:
                self._level = self.state.derived_level
                logger.warning(f"Sensors: degraded to level {int(self._level)} - {self._level.description}")
                self._notify()

    @_while_listening
    def on_absolute_orientation(self, alpha: Optional[float], beta: Optional[float] = None) -> None:
        """Absolute orientation event: alpha is counter-clockwise, converted to CW from north."""
        if alpha is None:
            return
        with self._reading("compass"):
            if beta is not None:
                self.state.elevation = clamp(90.0 - beta, -90.0, 90.0)
            self.state.has_compass = True
            self._apply_compass(wrap360(360.0 - alpha))

    @_while_listening
    def on_orientation(
        self,
        compass_heading: Optional[float] = None,
        accuracy: Optional[float] = None,
        beta: Optional[float] = None,
    ) -> None:
        """Orientation event whose compass heading is already CW from north."""
        with self._reading("compass"):
            if beta is not None and self.state.elevation is None:
                self.state.elevation = clamp(90.0 - beta, -90.0, 90.0)
            if compass_heading is not None:
                self.state.has_compass = True
                self.state.compass_accuracy = accuracy
                self._apply_compass(compass_heading)

    @_while_listening
    def on_motion(
        self,
        angular_rate: Optional[float] = None,
        gravity: Optional[Sequence[Optional[float]]] = None,
        timestamp: Optional[float] = None,
    ) -> None:
        """Motion event: yaw rate in deg/s and gravity vector, timestamp in seconds."""
        if angular_rate is not None:
            with self._reading("gyro"):
                now = time.monotonic() if timestamp is None else timestamp
                last = self.state.last_gyro_time
                self.state.has_gyro = True
                if last is not None:
                    self._integrate_gyro(angular_rate, now - last)
                self.state.last_gyro_time = now
        if gravity is not None:
            with self._reading("accel"):
                self._apply_gravity(gravity)

    # ---- Filter entry points ----
    @_while_listening
    def on_heading_update(
        self,
        raw_compass: Optional[float] = None,
        angular_rate: Optional[float] = None,
        dt: Optional[float] = None,
    ) -> None:
        """
        One filter step.

        Gyro integration (`angular_rate` deg/s over `dt` s) runs first, then a
        new compass reading is fused with the gyro-tracked heading.
        """
        if angular_rate is not None and dt is not None:
            with self._reading("gyro"):
                self.state.has_gyro = True
                self._integrate_gyro(angular_rate, dt)
        if raw_compass is not None:
            with self._reading("compass"):
                self.state.has_compass = True
                self._apply_compass(raw_compass)

    @_while_listening
    def on_elevation_update(self, gravity: Sequence[Optional[float]]) -> None:
        with self._reading("accel"):
            self._apply_gravity(gravity)

    def _apply_gravity(self, gravity: Sequence[Optional[float]]) -> None:
        _, gy, gz = gravity
        if gy is None or gz is None:
            return
        self.state.has_accel = True
        # Portrait: y ~ -9.8 vertical, z ~ 0 when the camera faces the horizon
        self.state.elevation = clamp(rad2deg(math.atan2(-gz, abs(gy))), -90.0, 90.0)

    def _integrate_gyro(self, angular_rate: float, dt: float) -> None:
        # Without a seed (compass or manual) there is nothing to propagate
        if self.state.gyro_heading is None or dt <= 0:
            return
        self.state.gyro_heading = wrap360(self.state.gyro_heading + angular_rate * dt)
        if not self.state.has_compass:
            # Level 3: the propagated heading is the only heading
            self.state.heading = self.state.gyro_heading
            self._notify()

    def _apply_compass(self, compass_heading: float) -> None:
        compass_heading = wrap360(compass_heading)
        if self.state.gyro_heading is not None and self.state.has_gyro:
            self.state.heading = self.fuse(compass_heading, self.state.gyro_heading)
        else:
            self.state.heading = compass_heading
        # Re-sync to stop drift accumulating between compass updates
        self.state.gyro_heading = self.state.heading
        self._notify()

    def fuse(self, compass: float, gyro: float) -> float:
        """Complementary filter across the 0/360 seam."""
        diff = wrap180(gyro - compass)
        return wrap360(compass + self.alpha * diff)

    # ---- Public API ----
    def set_initial_heading(self, degrees: float) -> None:
        """Seed an absolute heading (required once at level 3)."""
        self.state.heading = wrap360(degrees)
        self.state.gyro_heading = self.state.heading
        self.state.heading_seeded = True
        self._notify()

    def capture_reading(self) -> SensorReading:
        return SensorReading.capture(
            heading=self.state.heading,
            elevation=self.state.elevation,
            source=self.state.source,
            level=self._level,
            accuracy=self.state.compass_accuracy,
            heading_seeded=self.state.heading_seeded,
        )

    @property
    def level(self) -> FidelityLevel:
        return self._level

    @property
    def heading(self) -> Optional[float]:
        return self.state.heading

    @property
    def elevation(self) -> Optional[float]:
        return self.state.elevation

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def permission_granted(self) -> bool:
        return self._permission_granted
