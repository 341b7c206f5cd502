"""Logging module for WalkTale.

Lines look like ``[2024-05-01T10:00:00.123456] Narration triggered | {"mode": "landmark"}``.
The heartbeat, narration jobs and reroutes all log from their own threads,
so writes are serialized.
"""

import json
import threading
from datetime import datetime
from typing import Callable, Optional


class Logger:
    """Timestamped line logger: stdout, an optional append-mode file and an optional callback"""

    def __init__(self, log_path: Optional[str] = None,
                 callback: Optional[Callable[[str, Optional[dict]], None]] = None,
                 echo: bool = True):
        self.log_path = log_path
        self.callback = callback  # (message, data), e.g. the debug feed
        self.echo = echo
        self._lock = threading.Lock()
        self.file = open(log_path, "a") if log_path else None
        if self.file:
            banner = "=" * 60
            self.file.write(f"\n{banner}\nWalkTale Log - {datetime.now().isoformat()}\n{banner}\n\n")
            self.file.flush()

    @staticmethod
    def format(message: str, data: Optional[dict] = None) -> str:
        line = f"[{datetime.now().isoformat()}] {message}"
        if data:
            line += f" | {json.dumps(data, default=str)}"
        return line

    def log(self, message: str, data: Optional[dict] = None):
        """Log a message with optional structured data"""
        line = self.format(message, data)
        with self._lock:
            if self.echo:
                print(line)
            if self.file:
                self.file.write(line + "\n")
                self.file.flush()
        if self.callback:
            self.callback(message, data)

    def close(self):
        with self._lock:
            if self.file:
                self.file.close()
                self.file = None
