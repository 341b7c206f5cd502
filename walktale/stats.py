"""Per-tour usage counters and narration log."""

import json
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

MAPS_USAGE_KINDS = ("geocoding", "places_landmark", "directions")
NARRATION_CATEGORIES = ("landmark", "story", "greeting", "chat")


class SessionStats:
    """Records API usage and narrations for one tour.

    Created at tour start and closed by `finish`; providers and the
    controller write to it from worker threads.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._lock = threading.Lock()
        self.start_time = clock()
        self.end_time: Optional[float] = None
        self.llm_input_tokens = 0
        self.llm_output_tokens = 0
        self.tts_characters = 0
        self.api_requests = 0
        self.maps_usage = {kind: 0 for kind in MAPS_USAGE_KINDS}
        self.narrations: list[dict] = []
        self.distance = 0.0

    def record_llm_call(self, input_tokens: int, output_tokens: int):
        with self._lock:
            self.api_requests += 1
            self.llm_input_tokens += input_tokens
            self.llm_output_tokens += output_tokens

    def record_maps_call(self, kind: str):
        with self._lock:
            self.maps_usage[kind] = self.maps_usage.get(kind, 0) + 1

    def record_narration(self, title: str, text: str, category: str):
        """Log a narration; only the first 100 characters of text are kept"""
        with self._lock:
            self.tts_characters += len(text)
            self.narrations.append({
                "timestamp": self.clock(),
                "title": title,
                "text": text[:100] + ("..." if len(text) > 100 else ""),
                "category": category if category in NARRATION_CATEGORIES else "story",
            })

    def finish(self, distance: float) -> dict:
        """Close the session and return the report"""
        with self._lock:
            if self.end_time is None:
                self.end_time = self.clock()
            self.distance = distance
        return self.to_report()

    def to_report(self) -> dict:
        with self._lock:
            end = self.end_time if self.end_time is not None else self.clock()
            return {
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "stats": {
                    "llm_input_tokens": self.llm_input_tokens,
                    "llm_output_tokens": self.llm_output_tokens,
                    "tts_characters": self.tts_characters,
                    "api_requests": self.api_requests,
                    "maps_usage": dict(self.maps_usage),
                },
                "start_time": self.start_time,
                "end_time": end,
                "duration_seconds": round(end - self.start_time, 1),
                "total_distance_m": round(self.distance, 1),
                "narrations": list(self.narrations),
            }

    def save(self, path: str):
        """Write the session report to a JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_report(), f, indent=2)
