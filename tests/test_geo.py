"""Tests for the geometry helpers."""

from __future__ import annotations

import math

import pytest

from walktale.geo import (
    advance_along_polyline,
    bearing_to_compass,
    decode_polyline,
    distance,
    distance_to_segment,
    haversine_distance,
    in_restricted_region,
    initial_bearing,
    nearest_point_on_polyline,
    polyline_length,
    retry_with_backoff,
)
from walktale.models import Position

M_PER_DEG = 6371000 * math.pi / 180


def _p(lat: float, lon: float) -> Position:
    return Position(lat=lat, lon=lon)


A = _p(52.5200, 13.4050)
B = _p(52.5200 + 500 / M_PER_DEG, 13.4050)  # 500 m north of A
C = _p(52.5200 + 500 / M_PER_DEG, 13.4050 + 500 / (M_PER_DEG * math.cos(math.radians(52.52))))

# ---------------------------------------------------------------------------
# Distance and bearing
# ---------------------------------------------------------------------------


def test_distance_to_self_is_zero():
    assert haversine_distance(A.lat, A.lon, A.lat, A.lon) == 0
    assert distance(A, A) == 0


def test_one_degree_of_latitude():
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111_195, abs=1)


def test_known_city_distance():
    # Paris to London, about 344 km
    assert haversine_distance(48.8566, 2.3522, 51.5074, -0.1278) == pytest.approx(343_500, rel=0.01)


def test_bearings():
    assert initial_bearing(A, B) == pytest.approx(0, abs=0.01)
    assert initial_bearing(B, A) == pytest.approx(180, abs=0.01)
    assert initial_bearing(B, C) == pytest.approx(90, abs=0.5)
    assert 0 <= initial_bearing(C, B) < 360


@pytest.mark.parametrize("bearing, expected", [
    (0, "north"), (44, "northeast"), (90, "east"), (200, "south"), (350, "north"), (None, "unknown"),
])
def test_bearing_to_compass(bearing, expected):
    assert bearing_to_compass(bearing) == expected


# ---------------------------------------------------------------------------
# Segments and polylines
# ---------------------------------------------------------------------------


def test_degenerate_segment_is_point_distance():
    assert distance_to_segment(C, A, A) == distance(C, A)


def test_projection_clamped_to_segment_ends():
    beyond = _p(A.lat - 100 / M_PER_DEG, A.lon)
    assert distance_to_segment(beyond, A, B) == pytest.approx(100, abs=0.5)


def test_perpendicular_distance_to_segment():
    # C is 500 m east of B; the segment A-B runs north
    mid_east = _p((A.lat + B.lat) / 2, C.lon)
    assert distance_to_segment(mid_east, A, B) == pytest.approx(500, rel=0.01)


def test_two_point_polyline_matches_segment_distance():
    match = nearest_point_on_polyline(C, [A, B])
    assert match.index == 0
    assert match.distance == distance_to_segment(C, A, B)


def test_polyline_edge_cases():
    empty = nearest_point_on_polyline(A, [])
    assert empty.index == -1
    assert math.isinf(empty.distance)

    single = nearest_point_on_polyline(C, [A])
    assert single == (0, distance(C, A))


def test_polyline_ties_go_to_first_segment():
    # The loop walks A-B twice; both passes are equally close
    far_west = _p(B.lat, A.lon - 0.05)
    point = _p((A.lat + B.lat) / 2, C.lon)
    match = nearest_point_on_polyline(point, [A, B, far_west, A, B])
    assert match.index == 0


def test_nearest_segment_found():
    match = nearest_point_on_polyline(_p(C.lat + 10 / M_PER_DEG, C.lon), [A, B, C])
    assert match.index == 1
    assert match.distance == pytest.approx(10, abs=0.5)


def test_polyline_length():
    assert polyline_length([A, B, C]) == pytest.approx(1000, abs=2)
    assert polyline_length([A, B, C], start_index=1) == pytest.approx(500, abs=1)
    assert polyline_length([A]) == 0


def test_advance_along_polyline_turns_corners():
    moved = advance_along_polyline(A, [A, B, C], 600)
    assert distance(moved, B) == pytest.approx(100, abs=1)
    assert nearest_point_on_polyline(moved, [A, B, C]).index == 1


def test_advance_stops_at_end():
    moved = advance_along_polyline(A, [A, B], 5000)
    assert (moved.lat, moved.lon) == (B.lat, B.lon)


# ---------------------------------------------------------------------------
# Encoded polylines and regions
# ---------------------------------------------------------------------------


def test_decode_google_polyline():
    coords = decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@")
    assert coords == [
        pytest.approx((38.5, -120.2)),
        pytest.approx((40.7, -120.95)),
        pytest.approx((43.252, -126.453)),
    ]


def test_in_restricted_region():
    regions = [(33.0, 39.0, 124.0, 132.0)]
    assert in_restricted_region(_p(37.5665, 126.9780), regions)
    assert not in_restricted_region(A, regions)
    assert not in_restricted_region(A, [])


# ---------------------------------------------------------------------------
# retry_with_backoff
# ---------------------------------------------------------------------------


def test_retry_returns_first_success():
    results = iter([None, None, "fix"])
    sleeps = []
    value = retry_with_backoff(lambda: next(results), sleep=sleeps.append,
                               description="test", logger=None)
    assert value == "fix"
    assert sleeps == [1.0, 2.0]


def test_retry_gives_up_after_max_attempts(capsys):
    sleeps = []
    value = retry_with_backoff(lambda: None, initial_delay=4.0, max_delay=8.0,
                               sleep=sleeps.append, max_attempts=4)
    assert value is None
    assert sleeps == [4.0, 8.0, 8.0]
    assert "Failed to complete operation" in capsys.readouterr().out
