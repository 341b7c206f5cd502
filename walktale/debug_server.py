"""WebSocket debug feed for WalkTale.

Pushes state, log, route and narration messages to any connected client as
``{"type": ..., "data": ...}`` JSON. Clients may send
``{"type": "location", "data": {"lat": ..., "lon": ...}}`` to drive the tour
instead of a real GPS (see :class:`WebSocketGPS`).
"""

import asyncio
import json
import queue
import threading
import time
from typing import Optional

import websockets

from .models import Position


class DebugServer:
    """WebSocket server running its own event loop on a background thread"""

    def __init__(self, host: str = "localhost", port: int = 8765):
        self.host = host
        self.port = port
        self.location_queue: queue.Queue = queue.Queue()
        self.connected_clients: set = set()
        self.ws_thread: Optional[threading.Thread] = None
        self.ws_loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._ready = threading.Event()

    def start(self, wait: float = 2.0):
        """Start the WebSocket server in a background thread"""
        self._running = True
        self.ws_thread = threading.Thread(target=self._run_ws_server, daemon=True, name="debug-server")
        self.ws_thread.start()
        self._ready.wait(wait)
        print(f"Debug feed available at: ws://{self.host}:{self.port}")

    def _run_ws_server(self):
        self.ws_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.ws_loop)

        async def handler(websocket):
            self.connected_clients.add(websocket)
            try:
                async for message in websocket:
                    self.handle_message(message)
            finally:
                self.connected_clients.discard(websocket)

        async def main():
            try:
                async with websockets.serve(handler, self.host, self.port):
                    self._ready.set()
                    while self._running:
                        await asyncio.sleep(0.1)
            except OSError as e:
                print(f"WebSocket server error: {e}")
            finally:
                self._ready.set()

        self.ws_loop.run_until_complete(main())

    def handle_message(self, message: str) -> Optional[Position]:
        """Queue a location sent by a client. Anything else is ignored."""
        try:
            data = json.loads(message)
            if data.get("type") != "location":
                return None
            loc = data.get("data", {})
            position = Position(
                lat=float(loc["lat"]),
                lon=float(loc["lon"]),
                accuracy=float(loc.get("accuracy", 0)),
                timestamp=time.time(),
                heading=loc.get("heading"),
            )
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError):
            return None
        self.location_queue.put(position)
        return position

    def _send_message(self, msg_type: str, data: dict):
        """Send a message to all connected WebSocket clients"""
        if not self.connected_clients or not self.ws_loop:
            return

        message = json.dumps({"type": msg_type, "data": data}, default=str)

        async def send_to_all():
            for client in list(self.connected_clients):
                try:
                    await client.send(message)
                except websockets.ConnectionClosed:
                    self.connected_clients.discard(client)

        try:
            asyncio.run_coroutine_threadsafe(send_to_all(), self.ws_loop)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    def send_route(self, route_data: dict):
        self._send_message("route", route_data)

    def send_state(self, state: dict):
        self._send_message("state", state)

    def send_log(self, message: str, data: Optional[dict] = None):
        self._send_message("log", {"message": message, "data": data})

    def send_narration(self, title: str, text: str):
        self._send_message("narration", {"title": title, "text": text})

    def get_location(self, timeout: float = 30) -> Optional[Position]:
        """Block until a client sends a location"""
        try:
            return self.location_queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def stop(self):
        self._running = False


class WebSocketGPS:
    """GPS source fed by locations sent over the debug feed"""

    def __init__(self, debug_server: DebugServer):
        self.server = debug_server
        self.last_location: Optional[Position] = None
        self.consecutive_failures = 0

    def get_location(self, timeout: int = 30) -> Optional[Position]:
        location = self.server.get_location(timeout=timeout)
        if location:
            self.last_location = location
            self.consecutive_failures = 0
            return location
        self.consecutive_failures += 1
        return None

    def get_status(self) -> str:
        return "Debug feed (send location messages)"
