"""Route tracking: progress, deviation and arrival.

States::

    NO_DESTINATION -> ROUTING -> ON_ROUTE <-> DEVIATED -> ... -> ARRIVED

DEVIATED always has exactly one reroute in flight and returns to ON_ROUTE
when it lands. ARRIVED is terminal until a new destination is set.
"""

import threading
from enum import Enum
from typing import Callable, Optional

from .config import merged
from .controller import spawn_thread
from .geo import distance, in_restricted_region, nearest_point_on_polyline, polyline_length
from .logger import Logger
from .models import Position, Route, RouteSource
from .routing import RoutingError, straight_line_plan


class TrackerState(Enum):
    NO_DESTINATION = "no_destination"
    ROUTING = "routing"
    ON_ROUTE = "on_route"
    DEVIATED = "deviated"
    ARRIVED = "arrived"


class RouteTracker:
    """Keeps the active route to a destination and watches the user follow it"""

    def __init__(self, primary, fallback=None, logger: Optional[Logger] = None,
                 config: Optional[dict] = None,
                 runner: Callable[[Callable[[], None]], None] = spawn_thread,
                 on_arrival: Optional[Callable[[Position], None]] = None,
                 on_route: Optional[Callable[[Route], None]] = None):
        self.primary = primary
        self.fallback = fallback
        self.logger = logger or Logger()
        self.config = merged(config)
        self.runner = runner
        self.on_arrival = on_arrival
        self.on_route = on_route

        self.state = TrackerState.NO_DESTINATION
        self.destination: Optional[Position] = None
        self.route: Optional[Route] = None
        self.is_rerouting = False
        self.remaining_distance: Optional[float] = None
        self.remaining_duration: Optional[float] = None
        self.reroute_count = 0
        self.in_restricted_region = False

        self._lock = threading.Lock()
        self._request_id = 0

    # ------------------------------------------------------------------
    # Destination / routing
    # ------------------------------------------------------------------

    def set_destination(self, destination: Position, start: Position) -> Optional[Route]:
        """Route from start to destination, blocking until a route is installed"""
        with self._lock:
            self._request_id += 1
            request_id = self._request_id
            self.destination = destination
            self.route = None
            self.state = TrackerState.ROUTING
            self.is_rerouting = True
            self.remaining_distance = distance(start, destination)
            self.remaining_duration = None
        self.logger.log("Destination set", {
            "lat": destination.lat, "lon": destination.lon,
            "straight_line": round(self.remaining_distance),
        })
        route = self._compute_route(start, destination)
        self._install(route, request_id)
        return self.route

    def clear(self):
        """Forget the destination; any pending reroute is discarded when it lands"""
        with self._lock:
            self._request_id += 1
            self.state = TrackerState.NO_DESTINATION
            self.destination = None
            self.route = None
            self.is_rerouting = False
            self.remaining_distance = None
            self.remaining_duration = None

    def check_restricted(self, position: Position) -> bool:
        """Track whether position is in a restricted region, logging each entry once"""
        restricted = in_restricted_region(position, self.config["restricted_regions"])
        if restricted and not self.in_restricted_region:
            self.logger.log("Entered restricted region, primary routing disabled",
                            {"lat": position.lat, "lon": position.lon})
        self.in_restricted_region = restricted
        return restricted

    def _compute_route(self, start: Position, destination: Position) -> Route:
        """Try primary, then fallback, then a straight line. Never raises."""
        providers = []
        if self.check_restricted(start):
            self.logger.log("Restricted region: skipping primary routing")
        elif self.primary is not None:
            providers.append((self.primary, RouteSource.PRIMARY))
        if self.fallback is not None:
            providers.append((self.fallback, RouteSource.FALLBACK))

        for provider, source in providers:
            try:
                plan = provider.route(start, destination)
            except RoutingError as e:
                self.logger.log("Routing provider failed", {
                    "provider": getattr(provider, "name", source.value), "error": str(e),
                })
                continue
            return Route(destination=destination, polyline=tuple(plan.polyline), source=source,
                         total_distance=plan.distance, total_duration=plan.duration)

        plan = straight_line_plan(start, destination, self.config["straight_line_speed"])
        return Route(destination=destination, polyline=tuple(plan.polyline),
                     source=RouteSource.STRAIGHT_LINE,
                     total_distance=plan.distance, total_duration=plan.duration)

    def _install(self, route: Route, request_id: int):
        with self._lock:
            if request_id != self._request_id or self.state in (
                    TrackerState.NO_DESTINATION, TrackerState.ARRIVED):
                stale = True
            else:
                stale = False
                self.route = route
                self.state = TrackerState.ON_ROUTE
                self.is_rerouting = False
                self.remaining_distance = route.total_distance
                self.remaining_duration = route.total_duration
        if stale:
            self.logger.log("Discarding stale route", {"source": route.source.value})
            return
        self.logger.log("Route installed", {
            "source": route.source.value,
            "points": len(route.polyline),
            "distance": round(route.total_distance),
            "duration": round(route.total_duration),
        })
        if self.on_route:
            self.on_route(route)

    def _reroute(self, start: Position, destination: Position, request_id: int):
        route = None
        try:
            route = self._compute_route(start, destination)
        finally:
            if route is not None:
                self._install(route, request_id)
            else:
                with self._lock:
                    if request_id == self._request_id:
                        self.is_rerouting = False
                        self.state = TrackerState.ON_ROUTE

    # ------------------------------------------------------------------
    # Position stream
    # ------------------------------------------------------------------

    def on_position_update(self, position: Position) -> TrackerState:
        """Check arrival, then deviation, then update remaining distance"""
        with self._lock:
            if self.state in (TrackerState.NO_DESTINATION, TrackerState.ARRIVED) \
                    or self.destination is None:
                return self.state

            to_destination = distance(position, self.destination)
            if to_destination < self.config["arrival_radius"]:
                self.state = TrackerState.ARRIVED
                self._request_id += 1
                self.is_rerouting = False
                self.remaining_distance = 0.0
                self.remaining_duration = 0.0
                arrived = True
            else:
                arrived = False

        if arrived:
            self.logger.log("Arrived", {"distance": round(to_destination, 1)})
            if self.on_arrival:
                self.on_arrival(position)
            return TrackerState.ARRIVED

        if self._check_deviation(position):
            return TrackerState.DEVIATED

        self._update_progress(position)
        return self.state

    def _check_deviation(self, position: Position) -> bool:
        with self._lock:
            if self.is_rerouting or self.route is None or len(self.route.polyline) < 2:
                return False
            off_route = nearest_point_on_polyline(position, self.route.polyline).distance
            if off_route <= self.config["route_deviation_threshold"]:
                return False
            self.state = TrackerState.DEVIATED
            self.is_rerouting = True
            self.reroute_count += 1
            self._request_id += 1
            request_id = self._request_id
            destination = self.destination

        self.logger.log("Deviation detected, rerouting", {"off_route": round(off_route)})
        try:
            self.runner(lambda: self._reroute(position, destination, request_id))
        except Exception as e:
            with self._lock:
                if request_id == self._request_id:
                    self.is_rerouting = False
                    self.state = TrackerState.ON_ROUTE
            self.logger.log("Could not start reroute", {"error": str(e)})
        return True

    def _update_progress(self, position: Position):
        with self._lock:
            if self.state == TrackerState.DEVIATED or self.destination is None:
                return
            polyline = self.route.polyline if self.route else ()
            if len(polyline) > 1:
                index = nearest_point_on_polyline(position, polyline).index
                remaining = distance(position, polyline[index + 1]) + polyline_length(polyline, index + 1)
            else:
                remaining = distance(position, self.destination)
            self.remaining_distance = remaining
            self.remaining_duration = remaining / self.config["walking_speed"]

    def get_state(self) -> dict:
        with self._lock:
            return {
                "state": self.state.value,
                "route_source": self.route.source.value if self.route else None,
                "remaining_distance": round(self.remaining_distance) if self.remaining_distance is not None else None,
                "remaining_duration": round(self.remaining_duration) if self.remaining_duration is not None else None,
                "rerouting": self.is_rerouting,
                "reroutes": self.reroute_count,
            }
