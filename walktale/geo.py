"""Geographic utility functions.

Everything here is pure and stateless. Point arguments are anything with
``lat`` and ``lon`` attributes (usually :class:`~walktale.models.Position`).
"""

from __future__ import annotations

import math
import time
from typing import NamedTuple, Optional, Sequence

from .models import Position

EARTH_RADIUS = 6371000  # meters


class PolylineMatch(NamedTuple):
    index: int  # start index of the nearest segment, -1 for an empty polyline
    distance: float  # meters


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters using Haversine formula"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS * c


def bearing_between(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate bearing from point 1 to point 2 in degrees (0-360, 0=North)"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    x = math.sin(delta_lambda) * math.cos(phi2)
    y = (math.cos(phi1) * math.sin(phi2) -
         math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda))

    bearing = math.degrees(math.atan2(x, y))
    return (bearing + 360) % 360


def distance(a, b) -> float:
    """Great-circle distance between two points in meters"""
    return haversine_distance(a.lat, a.lon, b.lat, b.lon)


def initial_bearing(a, b) -> float:
    """Forward azimuth from a to b in degrees [0, 360)"""
    return bearing_between(a.lat, a.lon, b.lat, b.lon) % 360


def _project(point, seg_start, seg_end) -> tuple[float, float]:
    """Clamped projection of point onto a segment, in an equirectangular frame.

    Longitudes are scaled by cos(latitude) of the point. Good enough at city
    scale. Returns (lat, lon) of the projection.
    """
    k = math.cos(math.radians(point.lat))
    dx = (seg_end.lon - seg_start.lon) * k
    dy = seg_end.lat - seg_start.lat
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return seg_start.lat, seg_start.lon
    t = ((point.lon - seg_start.lon) * k * dx + (point.lat - seg_start.lat) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    return (seg_start.lat + t * (seg_end.lat - seg_start.lat),
            seg_start.lon + t * (seg_end.lon - seg_start.lon))


def distance_to_segment(point, seg_start, seg_end) -> float:
    """Distance in meters from point to the closest point of a segment"""
    if seg_start.lat == seg_end.lat and seg_start.lon == seg_end.lon:
        return distance(point, seg_start)
    lat, lon = _project(point, seg_start, seg_end)
    return haversine_distance(point.lat, point.lon, lat, lon)


def nearest_point_on_polyline(point, polyline: Sequence) -> PolylineMatch:
    """Find the polyline segment closest to point.

    Ties go to the lowest segment index. A polyline with a single point
    matches that point; an empty polyline returns ``PolylineMatch(-1, inf)``.
    """
    if not polyline:
        return PolylineMatch(-1, math.inf)
    if len(polyline) < 2:
        return PolylineMatch(0, distance(point, polyline[0]))

    best = PolylineMatch(0, math.inf)
    for i in range(len(polyline) - 1):
        d = distance_to_segment(point, polyline[i], polyline[i + 1])
        if d < best.distance:
            best = PolylineMatch(i, d)
    return best


def polyline_length(polyline: Sequence, start_index: int = 0) -> float:
    """Sum of segment lengths from start_index to the end of the polyline"""
    total = 0.0
    for i in range(max(start_index, 0), len(polyline) - 1):
        total += distance(polyline[i], polyline[i + 1])
    return total


def advance_along_polyline(current, polyline: Sequence, meters: float) -> Position:
    """Move `meters` forward along the polyline, starting from the projection of current.

    Returns the last polyline point once the end is reached, or current
    unchanged if the polyline has fewer than two points.
    """
    if len(polyline) < 2:
        return Position(lat=current.lat, lon=current.lon)

    match = nearest_point_on_polyline(current, polyline)
    lat, lon = _project(current, polyline[match.index], polyline[match.index + 1])
    start = Position(lat=lat, lon=lon)
    index = match.index
    remaining = meters

    while remaining > 0 and index < len(polyline) - 1:
        nxt = polyline[index + 1]
        to_next = distance(start, nxt)
        if remaining <= to_next:
            ratio = remaining / to_next
            return Position(lat=start.lat + (nxt.lat - start.lat) * ratio,
                            lon=start.lon + (nxt.lon - start.lon) * ratio)
        remaining -= to_next
        index += 1
        start = Position(lat=nxt.lat, lon=nxt.lon)

    last = polyline[-1]
    return Position(lat=last.lat, lon=last.lon)


def decode_polyline(encoded: str) -> list[tuple[float, float]]:
    """Decode a Google encoded polyline into (lat, lon) pairs"""
    coords = []
    index = lat = lon = 0
    while index < len(encoded):
        deltas = []
        for _ in range(2):
            shift = result = 0
            while True:
                b = ord(encoded[index]) - 63
                index += 1
                result |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lon += deltas[1]
        coords.append((lat / 1e5, lon / 1e5))
    return coords


def in_restricted_region(point, regions) -> bool:
    """Check whether point falls inside any (min_lat, max_lat, min_lon, max_lon) box"""
    for min_lat, max_lat, min_lon, max_lon in regions:
        if min_lat <= point.lat <= max_lat and min_lon <= point.lon <= max_lon:
            return True
    return False


def retry_with_backoff(func, max_time: float = 30.0, initial_delay: float = 1.0,
                       max_delay: float = 8.0, description: str = "operation",
                       logger=None, sleep=time.sleep, max_attempts: Optional[int] = None):
    """Retry a function with exponential backoff.

    Args:
        func: Function that returns a truthy value on success, falsy on failure
        max_time: Maximum total time to retry (seconds)
        initial_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        description: Description for logging
        logger: Optional Logger for retry messages (printed otherwise)
        sleep: Sleep function, replaceable in tests
        max_attempts: Give up after this many attempts regardless of time

    Returns:
        The result of func() on success, or None if all retries failed
    """
    def report(message: str):
        if logger:
            logger.log(message)
        else:
            print(message)

    start_time = time.time()
    delay = initial_delay
    attempt = 1

    while True:
        result = func()
        if result:
            return result

        elapsed = time.time() - start_time
        if elapsed >= max_time or (max_attempts and attempt >= max_attempts):
            report(f"Failed to complete {description} after {elapsed:.1f}s ({attempt} attempts)")
            return None

        remaining = max_time - elapsed
        sleep_time = min(delay, remaining, max_delay)
        if sleep_time > 0:
            report(f"Retrying {description} in {sleep_time:.1f}s (attempt {attempt})...")
            sleep(sleep_time)

        delay = min(delay * 2, max_delay)
        attempt += 1


def bearing_to_compass(bearing: Optional[float]) -> str:
    """Convert bearing to compass direction"""
    if bearing is None:
        return "unknown"
    directions = ["north", "northeast", "east", "southeast",
                  "south", "southwest", "west", "northwest"]
    index = round(bearing / 45) % 8
    return directions[index]
