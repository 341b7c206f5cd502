"""Narration content from the Gemini generative-language API.

Landmark and story lookups return ``None`` when there is nothing to say and
raise :class:`ContentProviderError` when the request itself fails (timeout,
HTTP error, malformed response). Every request carries its own timeout.
"""

import json
import re
import threading
from typing import Optional

import requests

from .config import merged
from .geo import bearing_to_compass, distance
from .models import Landmark, Position, Story


class ContentProviderError(Exception):
    """A content request failed; worth retrying later"""


def parse_json_response(raw: str):
    """Parse a JSON model response, tolerating markdown code fences.

    Raises ValueError if the text is not JSON.
    """
    text = raw.strip()
    fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)
    return json.loads(text)


def _system_instruction(role: str, position: Position, address: dict, language: str) -> str:
    place = ", ".join(v for v in (address.get("street"), address.get("neighborhood"),
                                  address.get("city"), address.get("country")) if v)
    return (
        f"You are a {role} for a walking tour. "
        f"The user is at {position.lat:.6f}, {position.lon:.6f} ({place or 'unknown area'}). "
        f"Answer in {language} only. Be factual; do not invent places. "
    )


class GeminiContentProvider:
    """ContentProvider backed by Gemini, with Nominatim reverse geocoding for context"""

    def __init__(self, api_key: str, config: Optional[dict] = None, stats=None,
                 http: Optional[requests.Session] = None, logger=None):
        self.api_key = api_key
        self.config = merged(config)
        self.stats = stats
        self.http = http or requests.Session()
        self.logger = logger
        self._address_lock = threading.Lock()
        self._address_cache: Optional[tuple[Position, dict]] = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _generate(self, prompt: str, system_instruction: Optional[str] = None,
                  json_mode: bool = True) -> str:
        url = self.config["gemini_url"].format(model=self.config["gemini_model"])
        body = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        if json_mode:
            body["generationConfig"] = {"responseMimeType": "application/json"}

        try:
            response = self.http.post(url, params={"key": self.api_key}, json=body,
                                      timeout=self.config["content_timeout"])
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as e:
            raise ContentProviderError("content request timed out") from e
        except requests.RequestException as e:
            raise ContentProviderError(f"content request failed: {e}") from e
        except ValueError as e:
            raise ContentProviderError("content response is not JSON") from e

        usage = data.get("usageMetadata") or {}
        if self.stats:
            self.stats.record_llm_call(usage.get("promptTokenCount", len(prompt) // 4),
                                       usage.get("candidatesTokenCount", 0))
        try:
            parts = data["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError) as e:
            raise ContentProviderError("content response has no candidates") from e

    def _generate_json(self, prompt: str, system_instruction: str):
        raw = self._generate(prompt, system_instruction)
        try:
            return parse_json_response(raw)
        except ValueError as e:
            raise ContentProviderError(f"malformed content JSON: {raw[:80]!r}") from e

    # ------------------------------------------------------------------
    # Reverse geocoding
    # ------------------------------------------------------------------

    def describe_location(self, position: Position) -> dict:
        """Street/neighborhood/city/country for a position. Empty dict if unknown."""
        with self._address_lock:
            if self._address_cache:
                cached_at, address = self._address_cache
                if distance(cached_at, position) <= self.config["address_cache_radius"]:
                    return address

        if self.stats:
            self.stats.record_maps_call("geocoding")
        try:
            response = self.http.get(
                self.config["nominatim_url"],
                params={"lat": position.lat, "lon": position.lon, "format": "jsonv2",
                        "addressdetails": 1, "zoom": 18},
                headers={"User-Agent": self.config["user_agent"]},
                timeout=self.config["content_timeout"],
            )
            response.raise_for_status()
            raw = response.json().get("address", {})
        except (requests.RequestException, ValueError) as e:
            if self.logger:
                self.logger.log("Reverse geocoding failed", {"error": str(e)})
            return {}

        address = {
            "street": raw.get("road") or raw.get("pedestrian"),
            "neighborhood": raw.get("neighbourhood") or raw.get("suburb") or raw.get("quarter"),
            "district": raw.get("city_district") or raw.get("borough"),
            "city": raw.get("city") or raw.get("town") or raw.get("village"),
            "country": raw.get("country"),
        }
        with self._address_lock:
            self._address_cache = (position, address)
        return address

    # ------------------------------------------------------------------
    # ContentProvider
    # ------------------------------------------------------------------

    def find_landmark(self, position: Position, language: str, exclude_names: list[str],
                      heading_hint: Optional[float], radius: float) -> Optional[Landmark]:
        """Most interesting landmark within radius, or None"""
        if self.stats:
            self.stats.record_maps_call("places_landmark")
        address = self.describe_location(position)
        instruction = _system_instruction("tour guide", position, address, language) + (
            f"Identify the single most interesting landmark, building or historical site "
            f"within {radius:.0f} meters. "
        )
        if heading_hint is not None:
            instruction += f"Prefer something ahead; the user is walking {bearing_to_compass(heading_hint)}. "
        if exclude_names:
            instruction += f"Exclude: {', '.join(exclude_names)}. "
        instruction += (
            "If there is nothing specific, return null. "
            'JSON format: {"name": "Name", "description": "Engaging two-sentence fact."}'
        )

        data = self._generate_json(
            f"Look around {position.lat:.6f}, {position.lon:.6f}. What do I see?", instruction)
        if not isinstance(data, dict) or not data.get("name") or not data.get("description"):
            return None
        name = str(data["name"]).strip()
        if name in exclude_names:
            return None
        return Landmark(
            name=name,
            description=str(data["description"]),
            location=position,
            maps_url=f"https://www.google.com/maps/search/?api=1&query={requests.utils.quote(name)}",
        )

    def find_filler_story(self, position: Position, language: str, exclude_topics: list[str],
                          step_index: int, heading_hint: Optional[float]) -> Optional[Story]:
        """A short cultural story about the area, or None"""
        address = self.describe_location(position)
        area = address.get("neighborhood") or address.get("city") or "this area"
        instruction = _system_instruction("historian", position, address, language) + (
            f"Tell a short cultural story about {area}. This is story number {step_index + 1} "
            f"of the walk, so pick a fresh angle. "
        )
        if exclude_topics:
            instruction += f"Exclude: {', '.join(exclude_topics)}. "
        instruction += 'JSON format: {"topic": "...", "text": "...", "wikiUrl": "..."}'

        data = self._generate_json(f"Tell me a story about {area}.", instruction)
        if not isinstance(data, dict) or not data.get("topic") or not data.get("text"):
            return None
        return Story(topic=str(data["topic"]).strip(), text=str(data["text"]),
                     wiki_url=data.get("wikiUrl"))

    def tour_greeting(self, destination_name: str, language: str) -> str:
        try:
            text = self._generate(
                f"Create a tour greeting for a walk to {destination_name}. "
                f"Language: {language} only. Two or three sentences, excited professional guide.",
                json_mode=False)
        except ContentProviderError:
            return "Welcome! Let's go."
        return text.strip() or "Welcome! Let's go."

    def arrival_greeting(self, destination_name: str, language: str) -> str:
        try:
            text = self._generate(
                f"The user arrived at {destination_name}. Congratulate them. "
                f"Language: {language} only. Keep it short.",
                json_mode=False)
        except ContentProviderError:
            return "You have arrived!"
        return text.strip() or "You have arrived!"
