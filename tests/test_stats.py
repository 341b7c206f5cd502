"""Tests for SessionStats and the session report."""

from __future__ import annotations

import json

from walktale.stats import SessionStats


class _Clock:
    def __init__(self):
        self.now = 500.0

    def __call__(self):
        return self.now


def test_counts_accumulate():
    stats = SessionStats()
    stats.record_llm_call(100, 20)
    stats.record_llm_call(50, 10)
    stats.record_maps_call("geocoding")
    stats.record_maps_call("directions")
    stats.record_maps_call("directions")

    report = stats.to_report()["stats"]
    assert report["llm_input_tokens"] == 150
    assert report["llm_output_tokens"] == 30
    assert report["api_requests"] == 2
    assert report["maps_usage"] == {"geocoding": 1, "places_landmark": 0, "directions": 2}


def test_narration_text_truncated_to_100_characters():
    stats = SessionStats()
    stats.record_narration("Long one", "x" * 150, "landmark")
    stats.record_narration("Short", "Hello", "chit-chat")

    first, second = stats.narrations
    assert first["text"] == "x" * 100 + "..."
    assert second["text"] == "Hello"
    assert second["category"] == "story"
    assert stats.tts_characters == 155


def test_finish_fixes_end_time_and_distance(tmp_path):
    clock = _Clock()
    stats = SessionStats(clock=clock)
    stats.record_narration("Welcome", "Hi there", "greeting")
    clock.now += 600
    report = stats.finish(1234.56)
    clock.now += 100

    assert report["duration_seconds"] == 600
    assert report["total_distance_m"] == 1234.6
    assert stats.to_report()["end_time"] == 1100.0

    path = tmp_path / "report.json"
    stats.save(str(path))
    saved = json.loads(path.read_text())
    assert saved["narrations"][0]["category"] == "greeting"
    assert saved["stats"]["tts_characters"] == 8
