import pytest

from pipetrace.model.errors import (
    CountExceeded,
    InvalidDistance,
    InvalidIndex,
    InvalidMemo,
    InvalidSegment,
    PointNotFound,
)
from pipetrace.model.readings import DirectionSource, FidelityLevel
from pipetrace.model.route import Calibration, RouteModel, RoutePoint


def build(route: RouteModel, coords, distances=()):
    for x, y in coords:
        assert route.add_point(x, y)
    for i, d in enumerate(distances):
        assert route.set_segment_distance(i, d)
    return route


class TestAddPoint:
    def test_ids_increase_and_fields_start_empty(self, route):
        first = route.add_point(10, 20, "  valve  ").point
        second = route.add_point(30, 40).point
        assert (first.id, second.id) == (1, 2)
        assert first.memo == "valve"
        assert first.distance_to_next is None
        assert first.heading is None and first.elevation is None
        assert first.direction_source is None and first.sensor_level is None

    def test_count_cap_leaves_sequence_unmodified(self):
        route = build(RouteModel(max_points=2), [(0, 0), (1, 1)])
        before = route.points
        result = route.add_point(2, 2)
        assert not result
        assert isinstance(result.error, CountExceeded)
        assert route.points == before

    def test_memo_too_long(self, route):
        result = route.add_point(0, 0, "x" * 51)
        assert isinstance(result.error, InvalidMemo)
        assert route.count == 0

    def test_ids_never_reused_after_undo(self, route):
        build(route, [(0, 0), (1, 1)])
        route.undo_last_point()
        assert route.add_point(2, 2).point.id == 3


class TestSegments:
    def test_negative_distance_is_a_distance_error_for_any_index(self, route):
        build(route, [(0, 0), (1, 1)])
        for index in (-1, 0, 1, 5):
            result = route.set_segment_distance(index, -1)
            assert isinstance(result.error, InvalidDistance)

    def test_too_large_distance(self, route):
        build(route, [(0, 0), (1, 1)])
        assert isinstance(route.set_segment_distance(0, 1000.5).error, InvalidDistance)
        assert route.set_segment_distance(0, 1000.0)

    def test_terminal_index_is_invalid_segment(self, route):
        build(route, [(0, 0), (1, 1)])
        assert isinstance(route.set_segment_distance(1, 2.0).error, InvalidSegment)

    def test_null_clears_distance(self, route):
        build(route, [(0, 0), (1, 1)], [2.5])
        assert route.set_segment_distance(0, None)
        assert route.points[0].distance_to_next is None

    def test_total_length_reflects_edits(self, route):
        build(route, [(0, 0), (1, 1), (2, 2)], [2.0, 3.0])
        assert route.get_total_length() == pytest.approx(5.0)
        route.update_point_by_index(1, distance=1.5)
        assert route.get_total_length() == pytest.approx(3.5)


class TestDirection:
    def test_set_point_direction_overwrites_all_fields(self, route):
        build(route, [(0, 0), (1, 1)])
        assert route.set_point_direction(0, 90.0, 10.0, DirectionSource.FUSION, FidelityLevel.FULL)
        p = route.points[0]
        assert (p.heading, p.elevation, p.direction_source, p.sensor_level) == (
            90.0, 10.0, DirectionSource.FUSION, FidelityLevel.FULL)

        route.set_point_direction(0, None, None, None, None)
        p = route.points[0]
        assert (p.heading, p.elevation, p.direction_source, p.sensor_level) == (None, None, None, None)

    def test_direction_is_normalized(self, route):
        build(route, [(0, 0), (1, 1)])
        route.set_point_direction(0, -90.0, 120.0, DirectionSource.MANUAL, FidelityLevel.MANUAL)
        p = route.points[0]
        assert (p.heading, p.elevation) == (270.0, 90.0)

        route.update_point_by_index(0, heading=725.0, elevation=-100.0)
        p = route.points[0]
        assert p.heading == pytest.approx(5.0)
        assert p.elevation == -90.0

    def test_set_point_direction_invalid_index(self, route):
        build(route, [(0, 0)])
        result = route.set_point_direction(3, 0.0, 0.0, "manual", 5)
        assert isinstance(result.error, InvalidIndex)

    def test_update_point_by_index_is_selective(self, route):
        build(route, [(0, 0), (1, 1)], [2.0])
        route.set_point_direction(0, 45.0, 5.0, DirectionSource.COMPASS, FidelityLevel.COMPASS_ACCEL)
        assert route.update_point_by_index(0, heading=50.0, memo="bend")
        p = route.points[0]
        assert p.heading == 50.0
        assert p.elevation == 5.0
        assert p.memo == "bend"
        assert p.distance_to_next == 2.0

    def test_update_point_by_index_ignores_distance_on_terminal_point(self, route):
        build(route, [(0, 0), (1, 1)])
        assert route.update_point_by_index(1, distance=4.0)
        assert route.points[1].distance_to_next is None

    def test_update_memo(self, route):
        build(route, [(0, 0)])
        assert route.update_memo(1, " tee ")
        assert route.get_point(1).memo == "tee"
        assert isinstance(route.update_memo(99, "x").error, PointNotFound)


class TestRemoval:
    def test_undo_invalidates_predecessor_distance(self, route):
        build(route, [(0, 0), (1, 1), (2, 2)], [2.0, 3.0])
        assert route.undo_last_point()
        assert [p.distance_to_next for p in route.points] == [2.0, None]

    def test_undo_three_points_clears_dangling_segment(self, route):
        build(route, [(0, 0), (10, 0), (20, 0)], [2.0, 3.0])
        route.undo_last_point()
        assert route.count == 2
        assert route.points[0].distance_to_next == 2.0
        assert route.points[1].distance_to_next is None

    def test_undo_on_empty_route_fails(self, route):
        assert not route.undo_last_point()

    def test_remove_point_nulls_predecessor(self, route):
        build(route, [(0, 0), (1, 1), (2, 2)], [2.0, 3.0])
        assert route.remove_point(2)
        assert [p.id for p in route.points] == [1, 3]
        assert route.points[0].distance_to_next is None

    def test_remove_first_point_keeps_following_segments(self, route):
        build(route, [(0, 0), (1, 1), (2, 2)], [2.0, 3.0])
        route.remove_point(1)
        assert [p.distance_to_next for p in route.points] == [3.0, None]

    def test_remove_unknown_point(self, route):
        assert isinstance(route.remove_point(42).error, PointNotFound)


class TestCalibration:
    def test_calibrate_and_estimate(self, route):
        build(route, [(0, 0), (100, 0), (100, 150)])
        assert route.calibrate(0, 2.0)
        assert route.calibration == Calibration(pixels_per_meter=50.0, reference_segment=0)
        assert route.estimate_distance(1) == pytest.approx(3.0)

    def test_estimate_without_calibration_is_none(self, route):
        build(route, [(0, 0), (100, 0)])
        assert route.estimate_distance(0) is None

    def test_estimate_invalid_index_is_none(self, route):
        build(route, [(0, 0), (100, 0)])
        route.calibrate(0, 1.0)
        assert route.estimate_distance(1) is None

    def test_invalid_calibration_is_a_no_op(self, route):
        build(route, [(0, 0), (100, 0)])
        assert not route.calibrate(0, 0.0)
        assert not route.calibrate(5, 1.0)
        assert route.calibration == Calibration()

    def test_recalibration_overwrites(self, route):
        build(route, [(0, 0), (100, 0), (100, 300)])
        route.calibrate(0, 2.0)
        route.calibrate(1, 3.0)
        assert route.calibration == Calibration(pixels_per_meter=100.0, reference_segment=1)


class TestLoadAndNotify:
    def test_round_trip_through_dict(self, route):
        build(route, [(0, 0), (100, 0), (100, 150)], [2.0])
        route.set_point_direction(1, 180.0, -5.0, DirectionSource.MANUAL, FidelityLevel.MANUAL)
        route.calibrate(0, 2.0)
        route.remove_point(3)

        other = RouteModel()
        other.load_dict(route.to_dict())
        assert other.points == route.points
        assert other.calibration == route.calibration
        assert other.next_id == 3

    def test_load_rederives_next_id(self, route):
        route.load_points([RoutePoint(id=4), RoutePoint(id=9)])
        assert route.add_point(0, 0).point.id == 10

    def test_load_defaults_missing_fields(self, route):
        route.load_dict({"points": [{"id": 1}, {"id": 2, "directionSource": "bogus"}]})
        p = route.points[1]
        assert p.screen_x == 0.0 and p.memo == ""
        assert p.direction_source is None and p.sensor_level is None

    def test_load_tolerates_unknown_level_and_out_of_range_angles(self, route):
        route.load_dict({"points": [{"id": 1, "sensorLevel": 7, "heading": 370.0, "elevation": 95.0}]})
        p = route.points[0]
        assert p.sensor_level is None
        assert p.heading == pytest.approx(10.0)
        assert p.elevation == 90.0

    def test_clear(self, route):
        build(route, [(0, 0), (100, 0)])
        route.calibrate(0, 1.0)
        route.clear()
        assert route.count == 0
        assert route.next_id == 1
        assert not route.calibration.is_calibrated

    def test_every_successful_mutation_emits_full_snapshot(self, route, snapshots):
        build(route, [(0, 0), (1, 1)], [2.0])
        route.set_segment_distance(0, -5)  # rejected, no snapshot
        assert len(snapshots) == 3
        assert all(isinstance(s, tuple) for s in snapshots)
        assert [len(s) for s in snapshots] == [1, 2, 2]
        assert snapshots[-1][0].distance_to_next == 2.0

    def test_snapshot_is_not_affected_by_later_mutations(self, route, snapshots):
        build(route, [(0, 0), (1, 1)])
        first = snapshots[-1]
        route.set_segment_distance(0, 7.0)
        assert first[0].distance_to_next is None

    def test_unsubscribe(self, route):
        received = []
        unsubscribe = route.subscribe(received.append)
        route.add_point(0, 0)
        unsubscribe()
        unsubscribe()
        route.add_point(1, 1)
        assert len(received) == 1
