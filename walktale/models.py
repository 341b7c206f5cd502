"""Data classes for WalkTale."""

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Position:
    """A single position fix. Superseded by the next fix, never mutated."""
    lat: float
    lon: float
    accuracy: Optional[float] = None  # meters
    timestamp: Optional[float] = None  # seconds since epoch
    heading: Optional[float] = None  # degrees, 0=North
    speed: Optional[float] = None  # m/s

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Position":
        return cls(
            lat=d["lat"],
            lon=d["lon"],
            accuracy=d.get("accuracy"),
            timestamp=d.get("timestamp"),
            heading=d.get("heading"),
            speed=d.get("speed"),
        )


@dataclass
class MovementState:
    """Movement metrics derived from accepted fixes"""
    last_known_position: Optional[Position] = None
    last_significant_move_time: float = 0.0
    last_significant_move_position: Optional[Position] = None
    cumulative_session_distance: float = 0.0  # meters
    current_movement_heading: Optional[float] = None  # degrees


class ContentSource(Enum):
    NONE = "none"
    LANDMARK = "landmark"
    STORY = "story"


@dataclass
class NarrationSession:
    """Trigger state for one tour, from start until stop or arrival"""
    anchor: Position  # last_narration_anchor_position
    known_landmark_names: list[str] = field(default_factory=list)
    known_story_topics: list[str] = field(default_factory=list)
    last_content_source: ContentSource = ContentSource.NONE
    filler_step_counter: int = 0
    cooldown_until: float = 0.0
    last_generation_timestamp: Optional[float] = None
    is_generating: bool = False
    generation_started_at: float = 0.0
    generation_id: int = 0
    active: bool = True

    @property
    def is_first_run(self) -> bool:
        return not self.known_landmark_names and not self.known_story_topics

    def known_topics(self) -> list[str]:
        """Everything narrated so far, landmarks first"""
        return self.known_landmark_names + self.known_story_topics

    def remember_landmark(self, name: str):
        if name not in self.known_landmark_names:
            self.known_landmark_names.append(name)

    def remember_story(self, topic: str):
        if topic not in self.known_story_topics:
            self.known_story_topics.append(topic)


@dataclass
class Landmark:
    name: str
    description: str
    location: Optional[Position] = None
    category: str = "landmark"
    maps_url: Optional[str] = None


@dataclass
class Story:
    topic: str
    text: str
    wiki_url: Optional[str] = None


class RouteSource(Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    STRAIGHT_LINE = "straight_line"


@dataclass(frozen=True)
class Route:
    """A navigable path to a destination. Replaced wholesale on every reroute."""
    destination: Position
    polyline: tuple[Position, ...]
    source: RouteSource
    total_distance: float  # meters
    total_duration: float  # seconds

    def to_dict(self) -> dict:
        return {
            "destination": self.destination.to_dict(),
            "polyline": [[p.lat, p.lon] for p in self.polyline],
            "source": self.source.value,
            "total_distance": self.total_distance,
            "total_duration": self.total_duration,
        }
