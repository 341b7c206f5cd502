"""Tests for RouteTracker: provider chain, progress, deviation and arrival."""

from __future__ import annotations

import math

import pytest

from walktale.models import Position, RouteSource
from walktale.route_tracker import RouteTracker, TrackerState
from walktale.routing import RoutePlan, RoutingError

BASE_LAT, BASE_LON = 48.8566, 2.3522
M_PER_DEG = 6371000 * math.pi / 180

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _at(north: float = 0.0, east: float = 0.0, lat: float = BASE_LAT, lon: float = BASE_LON) -> Position:
    return Position(
        lat=lat + north / M_PER_DEG,
        lon=lon + east / (M_PER_DEG * math.cos(math.radians(lat))),
        accuracy=5.0,
    )


class FakeRouter:
    """Routes straight north through a midpoint, or fails on demand"""

    def __init__(self, name: str = "fake", fail: bool = False):
        self.name = name
        self.fail = fail
        self.calls: list[tuple[Position, Position]] = []

    def route(self, start, end) -> RoutePlan:
        self.calls.append((start, end))
        if self.fail:
            raise RoutingError(f"{self.name} unavailable")
        mid = Position(lat=(start.lat + end.lat) / 2, lon=(start.lon + end.lon) / 2)
        polyline = [Position(lat=start.lat, lon=start.lon), mid, Position(lat=end.lat, lon=end.lon)]
        dist = 1000.0
        return RoutePlan(polyline=polyline, distance=dist, duration=dist / 1.3)


def _make_tracker(primary, fallback, logger, runner=None, **kwargs) -> RouteTracker:
    return RouteTracker(primary, fallback, logger=logger,
                        runner=runner or (lambda job: job()), **kwargs)


# ---------------------------------------------------------------------------
# Provider chain
# ---------------------------------------------------------------------------


def test_primary_route_used_when_available(logger):
    primary, fallback = FakeRouter("primary"), FakeRouter("fallback")
    tracker = _make_tracker(primary, fallback, logger)

    route = tracker.set_destination(_at(1000), _at())
    assert route.source == RouteSource.PRIMARY
    assert len(route.polyline) == 3
    assert tracker.state == TrackerState.ON_ROUTE
    assert fallback.calls == []


def test_primary_failure_falls_back(logger):
    primary, fallback = FakeRouter("primary", fail=True), FakeRouter("fallback")
    tracker = _make_tracker(primary, fallback, logger)

    route = tracker.set_destination(_at(1000), _at())
    assert route.source == RouteSource.FALLBACK
    assert len(primary.calls) == 1
    assert logger.count("Routing provider failed") == 1


def test_all_providers_failing_gives_straight_line(logger):
    tracker = _make_tracker(FakeRouter(fail=True), FakeRouter(fail=True), logger)

    route = tracker.set_destination(_at(1000), _at())
    assert route.source == RouteSource.STRAIGHT_LINE
    assert len(route.polyline) == 2
    assert route.total_distance == pytest.approx(1000, abs=1)
    assert route.total_duration == pytest.approx(1000 / 1.4, abs=1)


def test_restricted_region_skips_primary(logger):
    primary, fallback = FakeRouter("primary"), FakeRouter("fallback")
    tracker = _make_tracker(primary, fallback, logger)
    seoul = _at(lat=37.5665, lon=126.9780)

    route = tracker.set_destination(_at(1000, lat=37.5665, lon=126.9780), seoul)
    assert route.source == RouteSource.FALLBACK
    assert primary.calls == []

    tracker.set_destination(_at(2000, lat=37.5665, lon=126.9780), seoul)
    assert logger.count("Entered restricted region, primary routing disabled") == 1


def test_route_installed_callback(logger):
    installed = []
    tracker = _make_tracker(FakeRouter(), None, logger, on_route=installed.append)
    tracker.set_destination(_at(1000), _at())
    assert [r.source for r in installed] == [RouteSource.PRIMARY]


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


def test_remaining_distance_follows_polyline(logger):
    tracker = _make_tracker(FakeRouter(), None, logger)
    tracker.set_destination(_at(1000), _at())

    assert tracker.on_position_update(_at(300)) == TrackerState.ON_ROUTE
    assert tracker.remaining_distance == pytest.approx(700, abs=2)
    assert tracker.remaining_duration == pytest.approx(700 / 1.3, abs=2)

    tracker.on_position_update(_at(800, east=10))
    assert tracker.remaining_distance == pytest.approx(200, abs=2)


def test_remaining_distance_without_polyline_is_straight_line(logger):
    tracker = _make_tracker(FakeRouter(), None, logger)
    tracker.set_destination(_at(1000), _at())
    tracker.route = None

    tracker.on_position_update(_at(400, east=300))
    expected = math.hypot(600, 300)
    assert tracker.remaining_distance == pytest.approx(expected, rel=0.01)


def test_no_destination_ignores_positions(logger):
    tracker = _make_tracker(FakeRouter(), None, logger)
    assert tracker.on_position_update(_at(10)) == TrackerState.NO_DESTINATION
    assert tracker.remaining_distance is None


# ---------------------------------------------------------------------------
# Deviation (Scenario E)
# ---------------------------------------------------------------------------


def test_small_offset_does_not_reroute(logger, deferred):
    primary = FakeRouter()
    tracker = _make_tracker(primary, None, logger, runner=deferred)
    tracker.set_destination(_at(1000), _at())

    assert tracker.on_position_update(_at(300, east=40)) == TrackerState.ON_ROUTE
    assert deferred.jobs == []


def test_only_one_reroute_while_pending(logger, deferred):
    primary = FakeRouter()
    tracker = _make_tracker(primary, None, logger, runner=deferred)
    tracker.set_destination(_at(1000), _at())

    assert tracker.on_position_update(_at(300, east=60)) == TrackerState.DEVIATED
    for east in (65, 70, 80):
        tracker.on_position_update(_at(310, east=east))
    assert len(deferred.jobs) == 1
    assert tracker.reroute_count == 1

    deferred.run_all()
    assert len(primary.calls) == 2
    assert tracker.state == TrackerState.ON_ROUTE
    assert tracker.is_rerouting is False
    # New route starts where the user strayed
    assert tracker.route.polyline[0].lon == pytest.approx(_at(300, east=60).lon)


# ---------------------------------------------------------------------------
# Arrival (P6)
# ---------------------------------------------------------------------------


def test_arrival_fires_once(logger):
    arrivals = []
    tracker = _make_tracker(FakeRouter(), None, logger, on_arrival=arrivals.append)
    tracker.set_destination(_at(1000), _at())

    assert tracker.on_position_update(_at(960)) == TrackerState.ARRIVED
    for north in (970, 990, 1000, 980):
        tracker.on_position_update(_at(north))

    assert len(arrivals) == 1
    assert tracker.state == TrackerState.ARRIVED
    assert tracker.remaining_distance == 0


def test_reroute_landing_after_arrival_is_discarded(logger, deferred):
    tracker = _make_tracker(FakeRouter(), None, logger, runner=deferred)
    tracker.set_destination(_at(1000), _at())
    first_route = tracker.route

    tracker.on_position_update(_at(900, east=60))
    assert tracker.state == TrackerState.DEVIATED
    tracker.on_position_update(_at(990))
    deferred.run_all()

    assert tracker.state == TrackerState.ARRIVED
    assert tracker.route is first_route
    assert logger.count("Discarding stale route") == 1


def test_new_destination_rearms_arrival(logger):
    arrivals = []
    tracker = _make_tracker(FakeRouter(), None, logger, on_arrival=arrivals.append)
    tracker.set_destination(_at(1000), _at())
    tracker.on_position_update(_at(1000))

    tracker.set_destination(_at(2000), _at(1000))
    assert tracker.state == TrackerState.ON_ROUTE
    tracker.on_position_update(_at(2000))
    assert len(arrivals) == 2


def test_clear_forgets_destination(logger):
    tracker = _make_tracker(FakeRouter(), None, logger)
    tracker.set_destination(_at(1000), _at())
    tracker.clear()

    assert tracker.state == TrackerState.NO_DESTINATION
    assert tracker.get_state()["route_source"] is None
