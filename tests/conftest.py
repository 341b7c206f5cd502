"""Shared fakes: a settable clock, a recording narrator and controllable runners."""

from __future__ import annotations

import pytest

from walktale.logger import Logger


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeNarrator:
    """Records speech instead of playing it. Set `playing` to simulate busy audio."""

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock
        self.playing = False
        self.spoken: list[tuple[str, str, str]] = []  # (title, text, language)
        self.spoken_at: list[float] = []
        self.stops = 0

    def is_playing(self) -> bool:
        return self.playing

    def speak(self, text, language="English", title=None):
        self.spoken.append((title, text, language))
        if self.clock:
            self.spoken_at.append(self.clock())

    def stop(self):
        self.stops += 1
        self.playing = False

    def wait_until_idle(self, timeout=10) -> bool:
        return not self.playing

    @property
    def titles(self) -> list[str]:
        return [title for title, _, _ in self.spoken]


class DeferredRunner:
    """Holds jobs until the test runs them"""

    def __init__(self):
        self.jobs = []

    def __call__(self, job):
        self.jobs.append(job)

    def run(self, index: int = 0):
        self.jobs.pop(index)()

    def run_all(self):
        while self.jobs:
            self.jobs.pop(0)()


def inline_runner(job):
    job()


class RecordingLogger(Logger):
    """Logger that keeps messages in memory and prints nothing"""

    def __init__(self):
        super().__init__(echo=False)
        self.messages: list[tuple[str, dict | None]] = []

    def log(self, message, data=None):
        self.messages.append((message, data))

    def count(self, message: str) -> int:
        return sum(1 for m, _ in self.messages if m == message)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def narrator(clock):
    return FakeNarrator(clock)


@pytest.fixture
def deferred():
    return DeferredRunner()


@pytest.fixture
def logger():
    return RecordingLogger()


@pytest.fixture
def inline():
    return inline_runner
