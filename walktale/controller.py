"""Narration trigger controller.

Decides, from a noisy position stream and a fixed heartbeat, when to fetch
narration, whether to ask for a landmark or a filler story, and how to get
unstuck when a fetch hangs. Position updates only refresh movement state;
all fetching is started from :meth:`NarrationTriggerController.tick`.

Two time gates protect against back-to-back narration: the regular
cooldown (30s after a narration, 10s after a failure) and an independent
15s hard lock measured from the last successful narration. Together they
form the minimum inter-narration gap; the hard lock is the floor that
still holds if the cooldown is ever miscomputed.

Policy for a failed landmark search: the filler story served in its place
counts as the STORY turn, so the next trigger asks for a landmark again.
"""

import math
import threading
import time
from enum import Enum
from typing import Callable, Optional

from .config import merged
from .geo import distance, initial_bearing, bearing_to_compass
from .logger import Logger
from .models import ContentSource, MovementState, NarrationSession, Position
from .scheduler import Heartbeat


class TickResult(Enum):
    INACTIVE = "inactive"
    BUSY = "busy"
    AUDIO_PLAYING = "audio_playing"
    COOLDOWN = "cooldown"
    HARD_LOCK = "hard_lock"
    NOT_MOVED = "not_moved"
    STARTED = "started"
    FAILED = "failed"  # the runner could not start the job


def spawn_thread(job: Callable[[], None]):
    """Run a generation job on its own daemon thread"""
    threading.Thread(target=job, daemon=True, name="narration").start()


class NarrationTriggerController:
    """Heartbeat-driven narration scheduler for one tour at a time"""

    def __init__(self, content_provider, narrator, logger: Optional[Logger] = None,
                 config: Optional[dict] = None, clock: Callable[[], float] = time.time,
                 runner: Callable[[Callable[[], None]], None] = spawn_thread,
                 heartbeat_factory=Heartbeat, stats=None, language: str = "English"):
        self.provider = content_provider
        self.narrator = narrator
        self.logger = logger or Logger()
        self.config = merged(config)
        self.clock = clock
        self.runner = runner
        self.heartbeat_factory = heartbeat_factory
        self.stats = stats
        self.language = language

        self.session: Optional[NarrationSession] = None
        self.movement = MovementState()
        self.destination: Optional[Position] = None
        self.heartbeat = None

        self._lock = threading.Lock()
        # Held by a job for as long as it is speaking
        self._delivery_lock = threading.Lock()
        self._generation_counter = 0
        self._last_good_fix_time: Optional[float] = None

    # ------------------------------------------------------------------
    # Tour lifecycle
    # ------------------------------------------------------------------

    def on_tour_start(self, initial_position: Position, destination: Optional[Position] = None):
        """Reset the session, anchor it at the start position and begin the heartbeat"""
        now = self.clock()
        with self._lock:
            if self.session:
                self.session.active = False
            self.session = NarrationSession(anchor=initial_position)
            self.destination = destination
            self.movement = MovementState(
                last_known_position=initial_position,
                last_significant_move_time=now,
                last_significant_move_position=initial_position,
                current_movement_heading=_valid_heading(initial_position.heading),
            )
            if initial_position.accuracy is None or \
                    initial_position.accuracy <= self.config["poor_accuracy_threshold"]:
                self._last_good_fix_time = now

        self.logger.log("Tour started", {
            "lat": initial_position.lat, "lon": initial_position.lon,
            "language": self.language,
        })

        if self.heartbeat_factory:
            if self.heartbeat:
                self.heartbeat.stop()
            self.heartbeat = self.heartbeat_factory(
                self.config["heartbeat_interval"], self.tick,
                name="narration-heartbeat", logger=self.logger,
            )
            self.heartbeat.start()

    def on_tour_stop(self):
        """Stop the heartbeat. An in-flight generation may finish but its result is dropped,
        and a narration that is already being spoken is cut off."""
        if self.heartbeat:
            self.heartbeat.stop()
            self.heartbeat = None
        with self._lock:
            session = self.session
            if not session or not session.active:
                return
            session.active = False
            in_flight = session.is_generating
        self.logger.log("Tour stopped", {
            "generation_in_flight": in_flight,
            "landmarks": len(session.known_landmark_names),
            "stories": len(session.known_story_topics),
            "distance": round(self.movement.cumulative_session_distance),
        })
        if in_flight:
            self._interrupt_delivery()

    def _interrupt_delivery(self):
        """Stop the narrator until the job speaking, if any, lets go of the delivery lock"""
        if self._delivery_lock.acquire(blocking=False):
            self._delivery_lock.release()
            return
        deadline = time.monotonic() + self.config["audio_wait_timeout"]
        self.narrator.stop()
        while not self._delivery_lock.acquire(timeout=0.1):
            if time.monotonic() > deadline:
                self.logger.log("Narration did not stop in time")
                return
            self.narrator.stop()
        self._delivery_lock.release()
        self.logger.log("Interrupted narration on stop")

    @property
    def active(self) -> bool:
        return self.session is not None and self.session.active

    def set_destination(self, destination: Optional[Position]):
        with self._lock:
            self.destination = destination

    def extend_cooldown(self, seconds: float):
        """Hold off narration for `seconds`, e.g. after the tour greeting was spoken"""
        now = self.clock()
        with self._lock:
            if not self.session:
                return
            self.session.cooldown_until = max(self.session.cooldown_until, now + seconds)
            self.session.last_generation_timestamp = now

    # ------------------------------------------------------------------
    # Position stream
    # ------------------------------------------------------------------

    def on_position_update(self, position: Position) -> bool:
        """Update movement state from a fix. Returns False if the fix was ignored.

        Never starts a fetch; that is left to the heartbeat.
        """
        now = self.clock()
        threshold = self.config["poor_accuracy_threshold"]
        with self._lock:
            last = self.movement.last_known_position
            poor = position.accuracy is not None and position.accuracy > threshold
            if poor and last is not None and self._last_good_fix_time is not None and \
                    now - self._last_good_fix_time <= self.config["good_fix_max_age"]:
                return False
            if not poor:
                self._last_good_fix_time = now

            # Measured from the last significant-move point, not the previous fix
            since = self.movement.last_significant_move_position or last
            significant = False
            if since is None:
                self.movement.last_significant_move_position = position
            else:
                moved = distance(since, position)
                significant = moved > self.config["significant_move_distance"]
                if significant:
                    self.movement.last_significant_move_time = now
                    self.movement.last_significant_move_position = position
                    if self.active:
                        self.movement.cumulative_session_distance += moved

            heading = _valid_heading(position.heading)
            if heading is None and significant:
                heading = initial_bearing(since, position)
            if heading is not None:
                self.movement.current_movement_heading = heading

            self.movement.last_known_position = position
        return True

    def is_idle(self) -> bool:
        """True when no significant move has happened for the idle timeout"""
        return self.clock() - self.movement.last_significant_move_time > self.config["idle_timeout"]

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def tick(self) -> TickResult:
        """Decide whether to start a narration. Never raises and never blocks on I/O."""
        now = self.clock()
        with self._lock:
            session = self.session
            if session is None or not session.active:
                return TickResult.INACTIVE

            if session.is_generating:
                stuck_for = now - session.generation_started_at
                if stuck_for <= self.config["generation_timeout"]:
                    return TickResult.BUSY
                session.is_generating = False
                self.logger.log("Resetting stuck generation", {
                    "generation": session.generation_id, "stuck_for": round(stuck_for, 1),
                })

            if self.narrator.is_playing():
                return TickResult.AUDIO_PLAYING
            if now < session.cooldown_until:
                return TickResult.COOLDOWN
            if session.last_generation_timestamp is not None and \
                    now - session.last_generation_timestamp < self.config["hard_lock"]:
                return TickResult.HARD_LOCK

            position = self.movement.last_known_position or session.anchor
            from_anchor = distance(position, session.anchor)
            first_run = session.is_first_run
            if not first_run and from_anchor < self.config["trigger_distance"]:
                return TickResult.NOT_MOVED

            self._generation_counter += 1
            generation_id = self._generation_counter
            session.generation_id = generation_id
            session.is_generating = True
            session.generation_started_at = now

            if first_run or session.last_content_source != ContentSource.LANDMARK:
                mode = ContentSource.LANDMARK
            else:
                mode = ContentSource.STORY
            heading = self._heading_hint(position)
            exclude = session.known_topics()
            step = session.filler_step_counter

        self.logger.log("Narration triggered", {
            "generation": generation_id,
            "mode": mode.value,
            "first_run": first_run,
            "from_anchor": round(from_anchor),
            "heading": bearing_to_compass(heading),
        })

        def job():
            self._generate(session, generation_id, position, mode, heading, exclude, step)

        try:
            self.runner(job)
        except Exception as e:
            with self._lock:
                if session.generation_id == generation_id:
                    session.is_generating = False
                    session.cooldown_until = self.clock() + self.config["failure_cooldown"]
            self.logger.log("Could not start narration job", {"error": str(e)})
            return TickResult.FAILED
        return TickResult.STARTED

    def _heading_hint(self, position: Position) -> Optional[float]:
        heading = self.movement.current_movement_heading
        if heading is None and self.destination is not None:
            heading = initial_bearing(position, self.destination)
        return heading

    # ------------------------------------------------------------------
    # Generation job
    # ------------------------------------------------------------------

    def _is_current(self, session: NarrationSession, generation_id: int) -> bool:
        return session is self.session and session.active and session.generation_id == generation_id

    def _generate(self, session: NarrationSession, generation_id: int, position: Position,
                  mode: ContentSource, heading: Optional[float], exclude: list[str], step: int):
        try:
            if mode == ContentSource.LANDMARK:
                landmark = None
                for radius in self.config["landmark_radii"]:
                    landmark = self.provider.find_landmark(
                        position, self.language, exclude, heading, radius)
                    if landmark:
                        break
                if landmark:
                    self._deliver(session, generation_id, position, ContentSource.LANDMARK,
                                  landmark.name, landmark.description)
                    return
                self.logger.log("No landmark found, falling back to story",
                                {"generation": generation_id})

            story = self.provider.find_filler_story(
                position, self.language, exclude, step, heading)
            if story:
                self._deliver(session, generation_id, position, ContentSource.STORY,
                              story.topic, story.text)
            else:
                self.logger.log("No narration content found", {"generation": generation_id})
        except Exception as e:
            with self._lock:
                if self._is_current(session, generation_id):
                    session.cooldown_until = self.clock() + self.config["failure_cooldown"]
            self.logger.log("Narration generation failed", {
                "generation": generation_id, "error": f"{type(e).__name__}: {e}",
            })
        finally:
            with self._lock:
                if session.generation_id == generation_id:
                    session.is_generating = False

    def _deliver(self, session: NarrationSession, generation_id: int, position: Position,
                 source: ContentSource, title: str, text: str):
        """Record and speak content, unless the tour stopped or the job was superseded"""
        with self._delivery_lock:
            with self._lock:
                current = self._is_current(session, generation_id)
                if current:
                    if source == ContentSource.LANDMARK:
                        session.remember_landmark(title)
                    else:
                        session.remember_story(title)
                        session.filler_step_counter += 1
                    session.last_content_source = source
                    session.anchor = position
            if not current:
                self._discard(session, generation_id, title)
                return

            self.logger.log("Narrating", {"generation": generation_id, "source": source.value, "title": title})
            if self.stats:
                self.stats.record_narration(title, text, source.value)
            # on_tour_stop may have run while the result was being recorded
            with self._lock:
                current = self._is_current(session, generation_id)
            if not current:
                self._discard(session, generation_id, title)
                return
            self.narrator.speak(text, self.language, title)

        now = self.clock()
        with self._lock:
            session.cooldown_until = now + self.config["narration_cooldown"]
            session.last_generation_timestamp = now

    def _discard(self, session: NarrationSession, generation_id: int, title: str):
        self.logger.log("Discarding narration result", {
            "generation": generation_id, "title": title,
            "reason": "superseded" if session.active else "tour stopped",
        })

    # ------------------------------------------------------------------

    def get_state(self) -> dict:
        """Snapshot of controller state for logging and the debug feed"""
        with self._lock:
            session = self.session
            state = {
                "active": bool(session and session.active),
                "distance": round(self.movement.cumulative_session_distance, 1),
                "heading": self.movement.current_movement_heading,
            }
            if session:
                state.update({
                    "generating": session.is_generating,
                    "last_source": session.last_content_source.value,
                    "filler_step": session.filler_step_counter,
                    "landmarks": list(session.known_landmark_names),
                    "stories": list(session.known_story_topics),
                    "cooldown_until": session.cooldown_until,
                    "anchor": {"lat": session.anchor.lat, "lon": session.anchor.lon},
                })
            return state


def _valid_heading(heading: Optional[float]) -> Optional[float]:
    if heading is None or math.isnan(heading):
        return None
    return heading % 360
