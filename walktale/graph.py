"""Street graph built from OSM data, for offline walking routes."""

from typing import Optional

import networkx as nx

from .geo import haversine_distance

# Cost multiplier per highway type (lower = preferred for walking)
ROAD_WEIGHTS = {
    "footway": 1,
    "pedestrian": 1,
    "path": 1,
    "steps": 1.5,
    "living_street": 1.5,
    "residential": 2,
    "service": 4,
    "unclassified": 4,
    "tertiary": 5,
    "secondary": 7,
    "primary": 20,
}
DEFAULT_ROAD_WEIGHT = 5


class StreetGraph:
    """Graph representation of the walkable street network"""

    def __init__(self):
        self.graph = nx.Graph()
        self.nodes: dict[int, tuple[float, float]] = {}  # node_id -> (lat, lon)

    def build_from_osm(self, osm_data: dict):
        """Build graph from an Overpass response"""
        for element in osm_data.get("elements", []):
            if element.get("type") == "node":
                self.nodes[element["id"]] = (element["lat"], element["lon"])

        for element in osm_data.get("elements", []):
            if element.get("type") != "way":
                continue
            tags = element.get("tags", {})
            road_type = tags.get("highway", "unclassified")
            weight = ROAD_WEIGHTS.get(road_type, DEFAULT_ROAD_WEIGHT)
            way_nodes = element.get("nodes", [])

            for n1, n2 in zip(way_nodes, way_nodes[1:]):
                if n1 not in self.nodes or n2 not in self.nodes:
                    continue
                lat1, lon1 = self.nodes[n1]
                lat2, lon2 = self.nodes[n2]
                length = haversine_distance(lat1, lon1, lat2, lon2)
                self.graph.add_edge(n1, n2, length=length, weight=weight * length,
                                    road_type=road_type, name=tags.get("name"))

        # Drop nodes that belong to no usable way
        self.nodes = {n: loc for n, loc in self.nodes.items() if n in self.graph}

    def find_nearest_node(self, lat: float, lon: float) -> Optional[int]:
        """Find the nearest graph node to a location"""
        if not self.nodes:
            return None

        min_dist = float("inf")
        nearest = None

        for node_id, (nlat, nlon) in self.nodes.items():
            dist = haversine_distance(lat, lon, nlat, nlon)
            if dist < min_dist:
                min_dist = dist
                nearest = node_id

        return nearest

    def shortest_path(self, start: tuple[float, float],
                      end: tuple[float, float]) -> Optional[tuple[list[tuple[float, float]], float]]:
        """Cheapest walking path between the nodes nearest to start and end.

        Returns (coordinates, length in meters), or None if the two points are
        not connected.
        """
        source = self.find_nearest_node(*start)
        target = self.find_nearest_node(*end)
        if source is None or target is None:
            return None
        try:
            path = nx.shortest_path(self.graph, source, target, weight="weight")
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None

        length = sum(self.graph[u][v]["length"] for u, v in zip(path, path[1:]))
        return [self.nodes[n] for n in path], length
