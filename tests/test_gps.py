"""Tests for GPS sources. termux-location is mocked."""

from __future__ import annotations

import json
import math
import subprocess
from unittest.mock import patch

import pytest

from walktale.geo import distance
from walktale.gps import GPS, GPSPlayback, GPSRecorder, SimulatedGPS, parse_termux_location
from walktale.models import Position

M_PER_DEG = 6371000 * math.pi / 180


def _termux_output(**extra) -> subprocess.CompletedProcess:
    data = {"latitude": 35.6595, "longitude": 139.7005, "accuracy": 8.0, **extra}
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=json.dumps(data), stderr="")


# ---------------------------------------------------------------------------
# Termux GPS
# ---------------------------------------------------------------------------


def test_parse_termux_location_with_bearing():
    position = parse_termux_location({"latitude": 1.0, "longitude": 2.0, "accuracy": 4.0,
                                      "bearing": 270.0, "speed": 1.2}, now=10.0)
    assert position == Position(lat=1.0, lon=2.0, accuracy=4.0, timestamp=10.0, heading=270.0, speed=1.2)


def test_parse_termux_location_ignores_bearing_when_stationary():
    position = parse_termux_location({"latitude": 1.0, "longitude": 2.0, "bearing": 0.0, "speed": 0.0})
    assert position.heading is None
    assert position.speed == 0.0


def test_gps_get_location():
    gps = GPS()
    with patch("walktale.gps.subprocess.run", return_value=_termux_output(bearing=45.0, speed=1.0)):
        position = gps.get_location()
    assert position.lat == 35.6595
    assert position.heading == 45.0
    assert gps.get_status() == "GPS OK, accuracy 8m"


def test_gps_failures_return_none_and_count():
    gps = GPS()
    with patch("walktale.gps.subprocess.run", side_effect=FileNotFoundError):
        assert gps.get_location() is None
    with patch("walktale.gps.subprocess.run", side_effect=subprocess.TimeoutExpired("termux-location", 30)):
        assert gps.get_location() is None
    bad = subprocess.CompletedProcess(args=[], returncode=0, stdout="not json", stderr="")
    with patch("walktale.gps.subprocess.run", return_value=bad):
        assert gps.get_location() is None

    assert gps.consecutive_failures == 3
    assert "3 consecutive failures" in gps.get_status()


# ---------------------------------------------------------------------------
# Recording and playback
# ---------------------------------------------------------------------------


class ScriptedGPS:
    def __init__(self, fixes):
        self.fixes = list(fixes)

    def get_location(self, timeout=30):
        return self.fixes.pop(0)

    def get_status(self):
        return "scripted"


def test_recorded_trace_plays_back_with_heading(tmp_path):
    path = tmp_path / "trace.json"
    fixes = [Position(lat=1.0, lon=2.0, accuracy=5.0, timestamp=100.0, heading=90.0, speed=1.3),
             None,
             Position(lat=1.0001, lon=2.0, accuracy=6.0, timestamp=103.0)]
    recorder = GPSRecorder(ScriptedGPS(fixes), str(path))
    for _ in fixes:
        recorder.get_location()
    recorder.save()

    playback = GPSPlayback(str(path))
    replayed = [playback.get_location() for _ in fixes]
    assert replayed == fixes
    assert playback.consecutive_failures == 0
    assert playback.is_finished()
    assert playback.get_location() is None


def test_playback_interval_scaled_by_speed(tmp_path):
    path = tmp_path / "trace.json"
    path.write_text(json.dumps({"trace": [
        {"elapsed": 0.0, "location": {"lat": 1.0, "lon": 2.0}},
        {"elapsed": 4.0, "location": {"lat": 1.0, "lon": 2.0}},
        {"elapsed": 8.0, "location": {"lat": 1.0, "lon": 2.0}},
    ]}))
    playback = GPSPlayback(str(path), speed=2.0)
    playback.get_location()
    assert playback.get_poll_interval() == 2.0


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------


def test_simulated_gps_walks_the_route():
    start = Position(lat=10.0, lon=20.0)
    end = Position(lat=10.0 + 100 / M_PER_DEG, lon=20.0)
    gps = SimulatedGPS(start, walking_speed=1.3, poll_interval=3, clock=lambda: 0.0)
    gps.follow([start, end])

    first = gps.get_location()
    assert distance(start, first) == pytest.approx(3.9, abs=0.05)
    assert first.heading == pytest.approx(0, abs=0.5)
    assert first.speed == pytest.approx(1.3, abs=0.05)

    for _ in range(30):
        gps.get_location()
    assert gps.is_finished()


def test_simulated_gps_without_route_stands_still():
    start = Position(lat=10.0, lon=20.0)
    gps = SimulatedGPS(start)
    fix = gps.get_location()
    assert (fix.lat, fix.lon) == (10.0, 20.0)
    assert fix.heading is None
    assert not gps.is_finished()
