import asyncio

import h5py
import pytest

from conftest import FakeBackend, accel, compass, gyro
from pipetrace.controller.ar_adapter import ExternalMeasurementAdapter
from pipetrace.controller.sensor_fusion import SensorFusionEngine
from pipetrace.controller.session import DirectionMode, MeasurementSession
from pipetrace.model.errors import InvalidDistance
from pipetrace.model.readings import DirectionSource, FidelityLevel
from pipetrace.model.state import ProjectState


def sensor_session(route, *events):
    engine = SensorFusionEngine(FakeBackend(list(events)), settle_seconds=0.0)
    session = MeasurementSession(route, engine=engine)
    status = asyncio.run(session.enable_sensors())
    return session, status


class TestManualFlow:
    def test_first_distance_calibrates_and_later_segments_are_estimated(self, route):
        session = MeasurementSession(route)
        session.use_manual_direction()

        session.tap(0, 0, "start")
        session.tap(100, 0)
        assert session.pending_segment == 0
        assert session.confirm_segment(distance=2.0, preset="right")
        assert route.calibration.pixels_per_meter == pytest.approx(50.0)

        session.tap(100, 150)
        assert session.confirm_segment(preset="straight", memo="valve")

        first, second, last = route.points
        assert first.distance_to_next == 2.0
        assert (first.heading, first.elevation) == (90.0, 0.0)
        assert first.direction_source == DirectionSource.MANUAL
        assert first.sensor_level == FidelityLevel.MANUAL
        assert second.distance_to_next == pytest.approx(3.0)
        assert second.heading == 90.0
        assert last.memo == "valve"
        assert session.pending_segment is None

    def test_confirm_without_pending_segment(self, route):
        session = MeasurementSession(route)
        session.tap(0, 0)
        assert not session.confirm_segment(distance=1.0)

    def test_rejected_distance_does_not_calibrate(self, route):
        session = MeasurementSession(route)
        session.tap(0, 0)
        session.tap(100, 0)
        result = session.confirm_segment(distance=-1.0)
        assert isinstance(result.error, InvalidDistance)
        assert not route.calibration.is_calibrated
        assert session.pending_segment == 0

    def test_no_direction_without_mode(self, route):
        session = MeasurementSession(route)
        session.tap(0, 0)
        session.tap(10, 0)
        session.confirm_segment(distance=1.0, preset="left")
        assert route.points[0].heading is None

    def test_recalibrate(self, route):
        session = MeasurementSession(route)
        session.tap(0, 0)
        session.tap(100, 0)
        session.confirm_segment(distance=2.0)
        assert session.recalibrate(4.0)
        assert route.calibration.pixels_per_meter == pytest.approx(25.0)
        assert route.points[0].distance_to_next == 4.0
        assert not session.recalibrate(0.0)


class TestSensorFlow:
    def test_frozen_snapshot_is_applied_to_segment_start(self, route):
        session, status = sensor_session(route, compass(90.0), accel((0.0, -9.8, -9.8)))
        assert status.level == FidelityLevel.COMPASS_ACCEL
        assert session.direction_mode == DirectionMode.SENSOR

        session.tap(0, 0)
        snapshot = session.freeze()
        assert session.frozen
        # Phone moves while the frame is frozen
        session.engine.on_heading_update(raw_compass=180.0)
        session.tap(0, 100)
        session.confirm_segment(distance=5.0)

        p = route.points[0]
        assert p.heading == snapshot.heading == 90.0
        assert p.elevation == pytest.approx(45.0)
        assert p.direction_source == DirectionSource.COMPASS
        assert p.sensor_level == FidelityLevel.COMPASS_ACCEL
        assert not session.frozen

    def test_live_reading_used_without_freeze(self, route):
        session, _ = sensor_session(route, compass(10.0), accel())
        session.tap(0, 0)
        session.tap(0, 100)
        session.confirm_segment(distance=1.0)
        assert route.points[0].heading == 10.0

    def test_level5_falls_back_to_manual(self, route):
        session, status = sensor_session(route)
        assert status.requires_manual_input
        assert session.direction_mode == DirectionMode.MANUAL
        assert session.sensor_level == FidelityLevel.MANUAL

    def test_level3_seeds_initial_heading(self, route):
        engine = SensorFusionEngine(FakeBackend([gyro(), accel()]), settle_seconds=0.0)
        session = MeasurementSession(route, engine=engine)
        status = asyncio.run(session.enable_sensors(initial_heading=45.0))
        assert status.requires_initial_heading
        assert engine.heading == 45.0
        assert session.last_heading == 45.0

    def test_close_tears_down_engine(self, route):
        session, _ = sensor_session(route, compass(0.0), accel())
        session.close()
        assert not session.engine.is_listening
        assert session.sensor_level == FidelityLevel.MANUAL


class TestARFlow:
    def test_anchor_segments_written_to_route(self, route):
        session = MeasurementSession(route)
        session.place_anchor((0.0, 0.0, 0.0), memo="manhole")
        assert route.points[0].distance_to_next is None

        session.place_anchor((0.0, 0.0, 3.0))
        session.place_anchor((4.0, 0.0, 3.0))

        a, b, c = route.points
        assert a.distance_to_next == pytest.approx(3.0)
        assert a.heading == pytest.approx(0.0)
        assert a.direction_source == DirectionSource.AR_RELATIVE
        assert b.distance_to_next == pytest.approx(4.0)
        assert b.heading == pytest.approx(90.0)
        assert c.distance_to_next is None

        positions = session.positions()
        assert positions[-1] == pytest.approx([4.0, 0.0, 3.0])

    def test_anchors_after_existing_points(self, route):
        route.add_point(10, 10)
        adapter = ExternalMeasurementAdapter()
        adapter.set_compass_offset(90.0)
        session = MeasurementSession(route, ar_adapter=adapter)
        session.place_anchor((0, 0, 0))
        session.place_anchor((0, 0, 2))
        assert route.points[0].distance_to_next is None
        assert route.points[1].distance_to_next == pytest.approx(2.0)
        assert route.points[1].heading == pytest.approx(90.0)
        assert route.points[1].sensor_level == FidelityLevel.FULL

    def test_distance_override(self, route):
        session = MeasurementSession(route)
        session.place_anchor((0, 0, 0))
        session.place_anchor((0, 0, 2), distance_override=2.5)
        assert route.points[0].distance_to_next == 2.5


class TestSave:
    def test_save_writes_reconstructed_positions(self, tmp_path):
        state = ProjectState(project_name="yard")
        session = MeasurementSession(state.route)
        session.place_anchor((0, 0, 0))
        session.place_anchor((0, 0, 3))

        path = tmp_path / "yard.h5"
        session.save(state, str(path))

        with h5py.File(path, "r") as f:
            positions = f["route/positions"][()]
        assert positions[-1] == pytest.approx([0.0, 0.0, 3.0])
        assert state.filepath == str(path)
