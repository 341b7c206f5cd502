"""Fixed-interval heartbeat that drives the narration controller."""

import threading
from typing import Callable, Optional


class Heartbeat:
    """Calls `callback` every `interval` seconds on a background thread.

    Beats never overlap: a beat that comes due while the previous callback is
    still running is skipped rather than queued.
    """

    def __init__(self, interval: float, callback: Callable[[], object],
                 name: str = "heartbeat", logger=None):
        self.interval = interval
        self.callback = callback
        self.name = name
        self.logger = logger
        self.beats = 0
        self.skipped = 0
        self._busy = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop_event.is_set()

    def start(self):
        """Start beating. Calling start on a running heartbeat does nothing."""
        if self.running:
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(self._stop_event,),
                                        daemon=True, name=self.name)
        self._thread.start()
        if self.logger:
            self.logger.log("Heartbeat started", {"name": self.name, "interval": self.interval})

    def _run(self, stop_event: threading.Event):
        while not stop_event.wait(self.interval):
            self.beat()

    def beat(self) -> bool:
        """Run the callback once unless a previous run is still in progress"""
        if not self._busy.acquire(blocking=False):
            self.skipped += 1
            return False
        try:
            self.beats += 1
            self.callback()
        except Exception as e:
            if self.logger:
                self.logger.log("Heartbeat callback error", {"name": self.name, "error": str(e)})
            else:
                print(f"Heartbeat callback error: {e}")
        finally:
            self._busy.release()
        return True

    def stop(self):
        """Stop beating. A callback already running finishes on its own."""
        self._stop_event.set()
        if self._thread is not None and self.logger:
            self.logger.log("Heartbeat stopped", {"name": self.name, "beats": self.beats})
        self._thread = None
