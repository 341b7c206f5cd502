"""Routing providers.

Every provider has the same shape: ``route(start, end) -> RoutePlan`` and
raises :class:`RoutingError` when it cannot produce a path.
"""

from dataclasses import dataclass
from typing import Optional

import requests

from .config import merged
from .geo import decode_polyline, distance
from .graph import StreetGraph
from .models import Position
from .osm import OSMFetcher


class RoutingError(Exception):
    """A provider could not produce a route"""


@dataclass
class RoutePlan:
    polyline: list[Position]
    distance: float  # meters
    duration: float  # seconds


def straight_line_plan(start: Position, end: Position, speed: float) -> RoutePlan:
    """Last-resort route: a direct line at walking speed"""
    d = distance(start, end)
    return RoutePlan(polyline=[_point(start), _point(end)], distance=d, duration=d / speed)


def _point(p) -> Position:
    return Position(lat=p.lat, lon=p.lon)


def _get_json(http: requests.Session, url: str, params: dict, timeout: float) -> dict:
    try:
        response = http.get(url, params=params, timeout=timeout)
        response.raise_for_status()
        return response.json()
    except requests.Timeout as e:
        raise RoutingError("routing request timed out") from e
    except requests.RequestException as e:
        raise RoutingError(f"routing request failed: {e}") from e
    except ValueError as e:
        raise RoutingError("routing response is not JSON") from e


class GoogleDirectionsRouter:
    """Walking directions from the Google Directions web service"""

    name = "google"

    def __init__(self, api_key: str, config: Optional[dict] = None,
                 http: Optional[requests.Session] = None, stats=None):
        self.api_key = api_key
        self.config = merged(config)
        self.http = http or requests.Session()
        self.stats = stats

    def route(self, start: Position, end: Position) -> RoutePlan:
        if self.stats:
            self.stats.record_maps_call("directions")
        data = _get_json(self.http, self.config["directions_url"], {
            "origin": f"{start.lat},{start.lon}",
            "destination": f"{end.lat},{end.lon}",
            "mode": "walking",
            "avoid": "highways|tolls|ferries",
            "key": self.api_key,
        }, self.config["routing_timeout"])

        if data.get("status") != "OK" or not data.get("routes"):
            raise RoutingError(f"directions status {data.get('status')}")
        try:
            route = data["routes"][0]
            leg = route["legs"][0]
            coords = decode_polyline(route["overview_polyline"]["points"])
            plan = RoutePlan(
                polyline=[Position(lat=lat, lon=lon) for lat, lon in coords],
                distance=float(leg["distance"]["value"]),
                duration=float(leg["duration"]["value"]),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise RoutingError("malformed directions response") from e
        if len(plan.polyline) < 2:
            raise RoutingError("directions returned an empty path")
        return plan


class OSRMRouter:
    """Walking routes from an OSRM server"""

    name = "osrm"

    def __init__(self, config: Optional[dict] = None, http: Optional[requests.Session] = None):
        self.config = merged(config)
        self.http = http or requests.Session()

    def route(self, start: Position, end: Position) -> RoutePlan:
        url = f"{self.config['osrm_url']}/{start.lon},{start.lat};{end.lon},{end.lat}"
        data = _get_json(self.http, url, {"overview": "full", "geometries": "geojson"},
                         self.config["routing_timeout"])
        if data.get("code", "Ok") != "Ok" or not data.get("routes"):
            raise RoutingError(f"osrm code {data.get('code')}")
        try:
            route = data["routes"][0]
            polyline = [Position(lat=c[1], lon=c[0]) for c in route["geometry"]["coordinates"]]
            dist = float(route["distance"])
            duration = float(route["duration"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise RoutingError("malformed osrm response") from e
        if not polyline:
            raise RoutingError("osrm returned an empty path")
        # OSRM snaps to the street network; finish at the real destination
        polyline.append(_point(end))
        return RoutePlan(polyline=polyline, distance=dist, duration=duration)


class OSMGraphRouter:
    """Offline routes: shortest path over an OSM street graph around start and end"""

    name = "osm"

    def __init__(self, fetcher: Optional[OSMFetcher] = None, config: Optional[dict] = None):
        self.fetcher = fetcher or OSMFetcher()
        self.config = merged(config)

    def route(self, start: Position, end: Position) -> RoutePlan:
        center_lat = (start.lat + end.lat) / 2
        center_lon = (start.lon + end.lon) / 2
        radius = distance(start, end) / 2 + self.config["osm_fetch_margin"]
        osm_data = self.fetcher.fetch_streets(center_lat, center_lon, radius)
        if not osm_data.get("elements"):
            raise RoutingError("no street data available")

        graph = StreetGraph()
        graph.build_from_osm(osm_data)
        result = graph.shortest_path((start.lat, start.lon), (end.lat, end.lon))
        if result is None:
            raise RoutingError("start and destination are not connected")

        coords, length = result
        polyline = [_point(start)] + [Position(lat=lat, lon=lon) for lat, lon in coords] + [_point(end)]
        total = distance(start, polyline[1]) + length + distance(polyline[-2], end)
        return RoutePlan(polyline=polyline, distance=total,
                         duration=total / self.config["straight_line_speed"])
