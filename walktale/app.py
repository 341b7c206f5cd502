"""Main WalkTale application."""

import time
from typing import Optional

from .audio import AudioNarrator
from .config import merged
from .content import GeminiContentProvider
from .controller import NarrationTriggerController, spawn_thread
from .debug_server import DebugServer
from .geo import retry_with_backoff
from .gps import GPS, GPSPlayback, GPSRecorder, SimulatedGPS
from .logger import Logger
from .models import Position, Route
from .osm import OSMFetcher
from .route_tracker import RouteTracker, TrackerState
from .routing import GoogleDirectionsRouter, OSMGraphRouter, OSRMRouter
from .scheduler import Heartbeat
from .stats import SessionStats


class TourGuide:
    """Main application: one narrated walk from the current position to a destination"""

    def __init__(self, gemini_api_key: Optional[str] = None,
                 maps_api_key: Optional[str] = None,
                 destination_name: str = "your destination",
                 language: str = "English",
                 log_path: Optional[str] = None,
                 report_path: Optional[str] = None,
                 start_location: Optional[tuple[float, float]] = None,
                 fallback_router: str = "osrm",
                 debug_server: bool = False,
                 config: Optional[dict] = None,
                 content_provider=None, narrator=None, primary=None, fallback=None,
                 runner=spawn_thread, heartbeat_factory=Heartbeat):
        self.config = merged(config)
        self.destination_name = destination_name
        self.language = language
        self.report_path = report_path
        self.start_location = start_location  # (lat, lon) tuple for testing

        # Debug feed server
        self.debug_server: Optional[DebugServer] = None
        if debug_server:
            self.debug_server = DebugServer()
            self.debug_server.start()

        log_callback = self.debug_server.send_log if self.debug_server else None
        self.logger = Logger(log_path, callback=log_callback)
        self.stats = SessionStats()

        narration_callback = self.debug_server.send_narration if self.debug_server else None
        self.narrator = narrator or AudioNarrator(callback=narration_callback,
                                                  rate=self.config["speech_rate"])
        self.provider = content_provider or GeminiContentProvider(
            gemini_api_key, config=self.config, stats=self.stats, logger=self.logger)

        if primary is None and maps_api_key:
            primary = GoogleDirectionsRouter(maps_api_key, config=self.config, stats=self.stats)
        if fallback is None:
            if fallback_router == "osm":
                fallback = OSMGraphRouter(OSMFetcher(logger=self.logger), config=self.config)
            else:
                fallback = OSRMRouter(config=self.config)

        self.controller = NarrationTriggerController(
            self.provider, self.narrator, logger=self.logger, config=self.config,
            runner=runner, heartbeat_factory=heartbeat_factory, stats=self.stats,
            language=language,
        )
        self.tracker = RouteTracker(
            primary, fallback, logger=self.logger, config=self.config, runner=runner,
            on_arrival=self._on_arrival, on_route=self._on_route,
        )

        self.current_location: Optional[Position] = None
        self.destination: Optional[Position] = None
        self.arrived = False
        self.last_log_update = 0.0
        self.tour_start_time = 0.0

        # GPS source (can be swapped for recording/playback/simulation)
        self.gps = GPS()
        self.gps_source = self.gps

    def set_gps_source(self, source):
        """Set GPS source (GPS, GPSRecorder, GPSPlayback, SimulatedGPS or WebSocketGPS)"""
        self.gps_source = source

    def get_state(self) -> dict:
        """Current state as dict for logging and the debug feed"""
        state = {
            "narration": self.controller.get_state(),
            "route": self.tracker.get_state(),
            "gps_status": self.gps_source.get_status() if hasattr(self.gps_source, "get_status") else "unknown",
        }
        if self.current_location:
            state["location"] = {
                "lat": self.current_location.lat,
                "lon": self.current_location.lon,
                "accuracy": self.current_location.accuracy,
            }
        return state

    def periodic_update(self):
        now = time.time()
        if now - self.last_log_update >= self.config["log_interval"]:
            state = self.get_state()
            self.logger.log("STATE", state)
            if self.debug_server:
                self.debug_server.send_state(state)
            self.last_log_update = now

    # ------------------------------------------------------------------
    # Tour lifecycle
    # ------------------------------------------------------------------

    def _initial_fix(self) -> Optional[Position]:
        if self.start_location:
            lat, lon = self.start_location
            self.logger.log("Using provided start location", {"lat": lat, "lon": lon})
            return Position(lat=lat, lon=lon, accuracy=0, timestamp=time.time())

        print("Getting GPS fix...")

        def try_gps():
            loc = self.gps_source.get_location(timeout=10)
            if loc:
                self.logger.log("GPS fix obtained", {"lat": loc.lat, "lon": loc.lon, "accuracy": loc.accuracy})
            else:
                self.logger.log("GPS attempt failed")
            return loc

        return retry_with_backoff(try_gps, max_time=30.0, initial_delay=1.0, max_delay=8.0,
                                  description="GPS fix", logger=self.logger)

    def start_tour(self, destination: Position) -> bool:
        """Get a fix, route to destination, greet the user and start narrating"""
        self.logger.log("Starting tour", {
            "destination": self.destination_name, "lat": destination.lat, "lon": destination.lon,
            "language": self.language,
        })
        location = self._initial_fix()
        if not location:
            self.logger.log("Could not get GPS location after retries")
            print("Could not get GPS location")
            self.narrator.speak("Could not get GPS location", self.language, "GPS")
            return False

        self.current_location = location
        self.destination = destination
        self.arrived = False
        self.tour_start_time = time.time()

        route = retry_with_backoff(
            lambda: self.tracker.set_destination(destination, location),
            max_time=30.0, description="route", logger=self.logger, max_attempts=3)
        if route:
            print(f"Route: {route.total_distance:.0f}m, about {route.total_duration / 60:.0f} min "
                  f"({route.source.value})")

        # The greeting is fetched before the heartbeat starts so no landmark can beat it
        greeting = self.provider.tour_greeting(self.destination_name, self.language)
        self.controller.on_tour_start(location, destination)
        self.controller.extend_cooldown(self.config["narration_cooldown"])

        self.stats.record_narration("Welcome", greeting, "greeting")
        self.narrator.speak(greeting, self.language, "Welcome")
        self.controller.extend_cooldown(self.config["narration_cooldown"])
        return True

    def _on_route(self, route: Route):
        if isinstance(self.gps_source, SimulatedGPS):
            self.gps_source.follow(route.polyline)
        if self.debug_server:
            self.debug_server.send_route(route.to_dict())

    def _on_arrival(self, position: Position):
        """Stop narrating, let current audio finish, then congratulate"""
        self.arrived = True
        self.controller.on_tour_stop()
        if not self.narrator.wait_until_idle(self.config["audio_wait_timeout"]):
            self.logger.log("Audio still playing at arrival, interrupting")
        text = self.provider.arrival_greeting(self.destination_name, self.language)
        self.stats.record_narration("Arrived", text, "greeting")
        self.narrator.speak(text, self.language, "Arrived")

    def update(self) -> bool:
        """Process one GPS poll. Returns False when the tour is over."""
        position = self.gps_source.get_location(timeout=10)
        if position:
            self.current_location = position
            self.controller.on_position_update(position)
            if self.tracker.on_position_update(position) == TrackerState.ARRIVED:
                return False

        if self.arrived:
            return False

        if self.controller.is_idle():
            self.logger.log("No movement, pausing tour", {"idle_timeout": self.config["idle_timeout"]})
            print("\nNo movement for a while, tour paused")
            self.controller.on_tour_stop()
            return False

        self.periodic_update()
        return True

    def get_poll_interval(self) -> float:
        """Poll interval, respecting playback speed if applicable"""
        if isinstance(self.gps_source, (GPSPlayback, SimulatedGPS)):
            return self.gps_source.get_poll_interval()
        return self.config["gps_poll_interval"]

    def is_playback_finished(self) -> bool:
        if isinstance(self.gps_source, (GPSPlayback, SimulatedGPS)):
            return self.gps_source.is_finished()
        return False

    def stop(self) -> dict:
        """End the tour, silence audio and write the session report"""
        self.controller.on_tour_stop()
        self.narrator.stop()
        self.tracker.clear()

        distance = self.controller.movement.cumulative_session_distance
        report = self.stats.finish(distance)
        if self.report_path:
            self.stats.save(self.report_path)
            self.logger.log("Session report saved", {"path": self.report_path})

        if isinstance(self.gps_source, GPSRecorder):
            self.gps_source.save()

        summary = {
            "distance": round(distance),
            "narrations": len(report["narrations"]),
            "duration": time.time() - self.tour_start_time if self.tour_start_time else 0,
            "arrived": self.arrived,
        }
        self.logger.log("Tour summary", summary)
        print("\nTour summary:")
        print(f"  Distance: {summary['distance']}m")
        print(f"  Narrations: {summary['narrations']}")
        print(f"  Duration: {summary['duration'] / 60:.1f} minutes")
        return report

    def run(self, destination: Position):
        """Run the tour until arrival, idle timeout, end of playback or Ctrl+C"""
        print("\n=== WalkTale ===")
        print(f"Destination: {self.destination_name} ({destination.lat:.5f}, {destination.lon:.5f})")
        if isinstance(self.gps_source, GPSPlayback):
            print(f"Playback mode: {self.gps_source.speed}x speed")
        print("Press Ctrl+C to stop")
        print()

        if not self.start_tour(destination):
            self.logger.close()
            return

        try:
            while self.update():
                if self.is_playback_finished():
                    print("\nPlayback finished")
                    self.logger.log("Playback finished")
                    break
                time.sleep(self.get_poll_interval())
        except KeyboardInterrupt:
            print("\nTour interrupted")
            self.logger.log("Tour interrupted by user")
        finally:
            self.stop()
            if self.debug_server:
                self.debug_server.stop()
            self.logger.close()
