import asyncio
from typing import Callable, List, Optional

import pytest

from pipetrace.controller.sensor_fusion import SensorFusionEngine
from pipetrace.model.route import RouteModel


class FakeBackend:
    """Replays a fixed list of device events when listening starts."""

    def __init__(
        self,
        events: Optional[List[Callable[[SensorFusionEngine], None]]] = None,
        granted: bool = True,
        permission_error: Optional[Exception] = None,
        start_error: Optional[Exception] = None,
    ) -> None:
        self.events = events or []
        self.granted = granted
        self.permission_error = permission_error
        self.start_error = start_error
        self.started = False
        self.stop_calls = 0

    async def request_permission(self) -> bool:
        if self.permission_error is not None:
            raise self.permission_error
        return self.granted

    def start(self, engine: SensorFusionEngine) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True
        for event in self.events:
            event(engine)

    def stop(self) -> None:
        self.stop_calls += 1


def compass(heading: float) -> Callable[[SensorFusionEngine], None]:
    return lambda e: e.on_orientation(compass_heading=heading, accuracy=5.0)


def gyro(rate: float = 0.0, timestamp: float = 0.0) -> Callable[[SensorFusionEngine], None]:
    return lambda e: e.on_motion(angular_rate=rate, timestamp=timestamp)


def accel(gravity=(0.0, -9.8, 0.0)) -> Callable[[SensorFusionEngine], None]:
    return lambda e: e.on_elevation_update(gravity)


def start_engine(*events, **backend_kwargs) -> SensorFusionEngine:
    engine = SensorFusionEngine(FakeBackend(list(events), **backend_kwargs), settle_seconds=0.0)
    asyncio.run(engine.initialize())
    return engine


@pytest.fixture
def route() -> RouteModel:
    return RouteModel()


@pytest.fixture
def snapshots(route):
    """Every snapshot delivered by the route, in order."""
    received = []
    route.subscribe(received.append)
    return received
