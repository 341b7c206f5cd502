"""WalkTale - Narrated walking tours."""

from .config import CONFIG
from .models import (
    Position,
    MovementState,
    ContentSource,
    NarrationSession,
    Landmark,
    Story,
    Route,
    RouteSource,
)
from .logger import Logger
from .geo import (
    haversine_distance,
    bearing_between,
    bearing_to_compass,
    distance,
    initial_bearing,
    distance_to_segment,
    nearest_point_on_polyline,
    polyline_length,
    retry_with_backoff,
)
from .scheduler import Heartbeat
from .controller import NarrationTriggerController, TickResult
from .routing import RoutingError, GoogleDirectionsRouter, OSRMRouter, OSMGraphRouter
from .route_tracker import RouteTracker, TrackerState
from .content import ContentProviderError, GeminiContentProvider
from .audio import AudioNarrator
from .gps import GPS, GPSRecorder, GPSPlayback, SimulatedGPS
from .debug_server import DebugServer, WebSocketGPS
from .stats import SessionStats
from .app import TourGuide

__all__ = [
    "CONFIG",
    "Position",
    "MovementState",
    "ContentSource",
    "NarrationSession",
    "Landmark",
    "Story",
    "Route",
    "RouteSource",
    "Logger",
    "haversine_distance",
    "bearing_between",
    "bearing_to_compass",
    "distance",
    "initial_bearing",
    "distance_to_segment",
    "nearest_point_on_polyline",
    "polyline_length",
    "retry_with_backoff",
    "Heartbeat",
    "NarrationTriggerController",
    "TickResult",
    "RoutingError",
    "GoogleDirectionsRouter",
    "OSRMRouter",
    "OSMGraphRouter",
    "RouteTracker",
    "TrackerState",
    "ContentProviderError",
    "GeminiContentProvider",
    "AudioNarrator",
    "GPS",
    "GPSRecorder",
    "GPSPlayback",
    "SimulatedGPS",
    "DebugServer",
    "WebSocketGPS",
    "SessionStats",
    "TourGuide",
]
