"""Tests for StreetGraph and the OSM fetch cache."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import requests

from walktale.graph import StreetGraph
from walktale.osm import OSMFetcher


def _triangle_osm() -> dict:
    """A and B joined directly by a primary road and via C by footways"""
    return {"elements": [
        {"type": "node", "id": 1, "lat": 0.0, "lon": 0.0},
        {"type": "node", "id": 2, "lat": 0.0, "lon": 0.002},
        {"type": "node", "id": 3, "lat": 0.0005, "lon": 0.001},
        {"type": "node", "id": 99, "lat": 1.0, "lon": 1.0},  # not on any way
        {"type": "way", "id": 10, "nodes": [1, 2], "tags": {"highway": "primary"}},
        {"type": "way", "id": 11, "nodes": [1, 3, 2], "tags": {"highway": "footway", "name": "Garden Path"}},
    ]}


# ---------------------------------------------------------------------------
# StreetGraph
# ---------------------------------------------------------------------------


def test_build_drops_unused_nodes():
    graph = StreetGraph()
    graph.build_from_osm(_triangle_osm())
    assert set(graph.nodes) == {1, 2, 3}
    assert graph.graph.number_of_edges() == 3


def test_shortest_path_prefers_footways():
    graph = StreetGraph()
    graph.build_from_osm(_triangle_osm())

    coords, length = graph.shortest_path((0.0, -0.0001), (0.0, 0.0021))
    assert coords == [(0.0, 0.0), (0.0005, 0.001), (0.0, 0.002)]
    assert 240 < length < 260


def test_disconnected_points_have_no_path():
    osm = _triangle_osm()
    osm["elements"] += [
        {"type": "node", "id": 4, "lat": 0.01, "lon": 0.01},
        {"type": "node", "id": 5, "lat": 0.01, "lon": 0.011},
        {"type": "way", "id": 12, "nodes": [4, 5], "tags": {"highway": "residential"}},
    ]
    graph = StreetGraph()
    graph.build_from_osm(osm)
    assert graph.shortest_path((0.0, 0.0), (0.01, 0.011)) is None


def test_empty_graph():
    graph = StreetGraph()
    assert graph.find_nearest_node(0.0, 0.0) is None
    assert graph.shortest_path((0.0, 0.0), (1.0, 1.0)) is None


# ---------------------------------------------------------------------------
# OSMFetcher
# ---------------------------------------------------------------------------


def test_fetch_caches_and_reuses_covering_area(tmp_path):
    http = MagicMock()
    http.post.return_value.json.return_value = _triangle_osm()
    fetcher = OSMFetcher(cache_dir=str(tmp_path), http=http, logger=MagicMock())

    first = fetcher.fetch_streets(0.0, 0.0, 1000)
    second = fetcher.fetch_streets(0.0, 0.0001, 500)

    assert http.post.call_count == 1
    assert first["elements"] == second["elements"]
    cached = json.loads(next(tmp_path.iterdir()).read_text())
    assert cached["_cache_meta"]["radius"] == 1000


def test_fetch_error_returns_empty(tmp_path):
    http = MagicMock()
    http.post.side_effect = requests.ConnectionError("offline")
    fetcher = OSMFetcher(cache_dir=str(tmp_path), http=http, logger=MagicMock())

    assert fetcher.fetch_streets(0.0, 0.0, 500) == {"elements": []}
    assert list(tmp_path.iterdir()) == []
