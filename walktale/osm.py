"""OpenStreetMap street data via the Overpass API, with a disk cache."""

import hashlib
import json
import os
import time
from typing import Optional

import requests

from .geo import haversine_distance

OVERPASS_URL = "https://overpass-api.de/api/interpreter"
WALKABLE_HIGHWAYS = ("footway|pedestrian|path|steps|residential|living_street|service|"
                     "unclassified|tertiary|secondary|primary")


class OSMFetcher:
    """Fetch walkable ways around a point, reusing any cached area that covers it"""

    def __init__(self, cache_dir: str = "osm_cache", max_age: float = 7 * 24 * 3600,
                 http: Optional[requests.Session] = None, logger=None):
        self.cache_dir = cache_dir
        self.max_age = max_age
        self.http = http or requests.Session()
        self.logger = logger

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)
        else:
            print(message)

    def _cache_path(self, lat: float, lon: float, radius: float) -> str:
        # Round coordinates to reduce near-duplicate caches
        key = f"{lat:.5f},{lon:.5f},{radius:.0f}"
        h = hashlib.md5(key.encode()).hexdigest()[:12]
        return os.path.join(self.cache_dir, f"osm_{h}.json")

    def _find_covering_cache(self, lat: float, lon: float, radius: float) -> Optional[dict]:
        """A cached response whose circle contains the requested circle, if any"""
        if not os.path.isdir(self.cache_dir):
            return None
        now = time.time()
        for fname in os.listdir(self.cache_dir):
            if not fname.endswith(".json"):
                continue
            fpath = os.path.join(self.cache_dir, fname)
            try:
                if now - os.path.getmtime(fpath) > self.max_age:
                    continue
                with open(fpath) as f:
                    cached = json.load(f)
                meta = cached.get("_cache_meta")
                if not meta:
                    continue
                dist = haversine_distance(lat, lon, meta["lat"], meta["lon"])
                if meta["radius"] >= dist + radius:
                    return cached
            except (json.JSONDecodeError, KeyError, OSError):
                continue
        return None

    def fetch_streets(self, lat: float, lon: float, radius: float, timeout: float = 30) -> dict:
        """Walkable ways within radius of (lat, lon). Empty element list on failure."""
        cached = self._find_covering_cache(lat, lon, radius)
        if cached:
            self._log("Using cached OSM data", {"radius": cached["_cache_meta"]["radius"]})
            return {k: v for k, v in cached.items() if k != "_cache_meta"}

        query = f"""
        [out:json][timeout:{int(timeout)}];
        (
          way["highway"~"^({WALKABLE_HIGHWAYS})$"](around:{radius:.0f},{lat},{lon});
        );
        out body;
        >;
        out skel qt;
        """
        self._log("Fetching OSM data", {"lat": round(lat, 5), "lon": round(lon, 5), "radius": round(radius)})

        try:
            response = self.http.post(OVERPASS_URL, data={"data": query}, timeout=timeout + 15)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            self._log("OSM fetch error", {"error": str(e)})
            return {"elements": []}

        if data.get("elements"):
            try:
                os.makedirs(self.cache_dir, exist_ok=True)
                cache_data = dict(data)
                cache_data["_cache_meta"] = {"lat": lat, "lon": lon, "radius": radius,
                                             "fetched_at": time.time()}
                with open(self._cache_path(lat, lon, radius), "w") as f:
                    json.dump(cache_data, f)
            except OSError as e:
                self._log("Could not cache OSM data", {"error": str(e)})
        return data
