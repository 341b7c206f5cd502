"""GPS sources: Termux device, recording/playback and route simulation.

Every source exposes ``get_location(timeout) -> Optional[Position]`` and
``get_status() -> str``. A failed fix is ``None``, never an exception.
"""

import json
import subprocess
import time
from datetime import datetime
from typing import Callable, Optional, Sequence

from .config import CONFIG
from .geo import advance_along_polyline, distance, initial_bearing
from .models import Position


class GPS:
    """GPS access via Termux API"""

    def __init__(self, provider: str = "gps"):
        self.provider = provider
        self.last_location: Optional[Position] = None
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None

    def _fail(self, error: str) -> None:
        self.consecutive_failures += 1
        self.last_error = error
        return None

    def get_location(self, timeout: int = 30) -> Optional[Position]:
        """Get current location using termux-location"""
        try:
            result = subprocess.run(
                ["termux-location", "-p", self.provider, "-r", "once"],
                capture_output=True,
                text=True,
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            return self._fail("timeout")
        except FileNotFoundError:
            return self._fail("termux-location not installed")

        if result.returncode != 0:
            return self._fail(result.stderr.strip() if result.stderr else "unknown error")
        if not result.stdout or not result.stdout.strip():
            return self._fail("empty response")

        try:
            position = parse_termux_location(json.loads(result.stdout))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            return self._fail(f"bad response: {e}")

        self.last_location = position
        self.consecutive_failures = 0
        self.last_error = None
        return position

    def get_status(self) -> str:
        """Get GPS status string"""
        if self.consecutive_failures == 0:
            acc = f", accuracy {self.last_location.accuracy:.0f}m" if self.last_location and self.last_location.accuracy else ""
            return f"GPS OK{acc}"
        return f"GPS: {self.consecutive_failures} consecutive failures ({self.last_error})"


def parse_termux_location(data: dict, now: Optional[float] = None) -> Position:
    """Position from termux-location JSON. Bearing and speed are optional."""
    heading = data.get("bearing")
    speed = data.get("speed")
    return Position(
        lat=float(data["latitude"]),
        lon=float(data["longitude"]),
        accuracy=data.get("accuracy"),
        timestamp=now if now is not None else time.time(),
        # Termux reports bearing 0.0 when stationary
        heading=float(heading) if heading and speed else None,
        speed=float(speed) if speed is not None else None,
    )


class GPSRecorder:
    """Records GPS trace to file"""

    def __init__(self, gps, record_path: str, clock: Callable[[], float] = time.time):
        self.gps = gps
        self.record_path = record_path
        self.clock = clock
        self.trace: list[dict] = []
        self.start_time = clock()

    def get_location(self, timeout: int = 30) -> Optional[Position]:
        """Get location and record it"""
        location = self.gps.get_location(timeout)

        # Record even failed attempts
        now = self.clock()
        self.trace.append({
            "elapsed": now - self.start_time,
            "timestamp": now,
            "location": location.to_dict() if location else None,
            "status": self.gps.get_status()
        })
        return location

    def get_status(self) -> str:
        return self.gps.get_status()

    def save(self):
        """Save trace to file"""
        with open(self.record_path, "w") as f:
            json.dump({
                "recorded_at": datetime.now().isoformat(),
                "trace": self.trace
            }, f, indent=2)
        print(f"GPS trace saved to {self.record_path} ({len(self.trace)} entries)")


class GPSPlayback:
    """Plays back a recorded GPS trace"""

    def __init__(self, playback_path: str, speed: float = 1.0):
        self.playback_path = playback_path
        self.speed = speed
        self.index = 0
        self.last_location: Optional[Position] = None
        self.consecutive_failures = 0

        with open(playback_path) as f:
            self.trace: list[dict] = json.load(f)["trace"]
        print(f"Loaded GPS trace from {playback_path} ({len(self.trace)} entries)")

    def get_location(self, timeout: int = 30) -> Optional[Position]:
        """Next entry of the trace; None for a recorded failure or once finished"""
        if self.index >= len(self.trace):
            return None

        entry = self.trace[self.index]
        self.index += 1

        if entry["location"]:
            location = Position.from_dict(entry["location"])
            self.last_location = location
            self.consecutive_failures = 0
            return location
        self.consecutive_failures += 1
        return None

    def get_poll_interval(self) -> float:
        """Recorded gap to the next entry, scaled by playback speed"""
        if self.index <= 0 or self.index >= len(self.trace):
            return CONFIG["gps_poll_interval"] / self.speed

        delta = self.trace[self.index].get("elapsed", 0) - self.trace[self.index - 1].get("elapsed", 0)
        return max(0.1, min(delta / self.speed, 5.0))

    def is_finished(self) -> bool:
        return self.index >= len(self.trace)

    def get_status(self) -> str:
        progress = f"{self.index}/{len(self.trace)}"
        if self.consecutive_failures == 0:
            return f"Playback OK ({progress})"
        return f"Playback: {self.consecutive_failures} failures ({progress})"


class SimulatedGPS:
    """Walks a polyline at a fixed speed, one poll interval per fix.

    Used to rehearse a tour without leaving the desk. ``speed`` multiplies the
    distance covered per fix; the real poll interval is unchanged.
    """

    def __init__(self, start: Position, walking_speed: float = CONFIG["walking_speed"],
                 poll_interval: float = CONFIG["gps_poll_interval"], speed: float = 1.0,
                 clock: Callable[[], float] = time.time):
        self.position = start
        self.step = walking_speed * poll_interval * speed
        self.poll_interval = poll_interval
        self.clock = clock
        self.polyline: Sequence[Position] = ()
        self.last_location: Optional[Position] = None
        self.fixes = 0

    def follow(self, polyline: Sequence[Position]):
        """Walk along this polyline from now on, e.g. after a reroute"""
        self.polyline = tuple(polyline)

    def get_location(self, timeout: int = 30) -> Optional[Position]:
        current = self.position
        if len(self.polyline) >= 2:
            nxt = advance_along_polyline(current, self.polyline, self.step)
        else:
            nxt = current
        moved = distance(current, nxt)
        self.position = Position(
            lat=nxt.lat,
            lon=nxt.lon,
            accuracy=5.0,
            timestamp=self.clock(),
            heading=initial_bearing(current, nxt) if moved > 0.5 else None,
            speed=moved / self.poll_interval,
        )
        self.last_location = self.position
        self.fixes += 1
        return self.position

    def get_poll_interval(self) -> float:
        return self.poll_interval

    def is_finished(self) -> bool:
        return bool(self.polyline) and distance(self.position, self.polyline[-1]) < 1.0

    def get_status(self) -> str:
        return f"Simulated ({self.fixes} fixes)"
