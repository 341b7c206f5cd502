"""Audio/Text-to-speech module for WalkTale.

There is one playback channel for the whole application. Starting new
speech stops whatever is playing first; utterances never interleave.
"""

import subprocess
import threading
from typing import Optional, Callable

from .config import CONFIG

# espeak voice per tour language; anything unlisted uses English
VOICES = {
    "English": "en",
    "Chinese": "cmn",
    "German": "de",
    "Korean": "ko",
    "Japanese": "ja",
    "Arabic": "ar",
    "Spanish": "es",
    "French": "fr",
    "Thai": "th",
    "Vietnamese": "vi",
}


def voice_for(language: str) -> str:
    for name, code in VOICES.items():
        if name.lower() in language.lower():
            return code
    return "en"


class AudioNarrator:
    """Text-to-speech over espeak, falling back to pyttsx3 and then to print.

    `speak` blocks until playback ends (or is stopped). Other threads can
    call `is_playing` and `stop` while it blocks.
    """

    def __init__(self, callback: Optional[Callable[[str, str], None]] = None,
                 rate: int = CONFIG["speech_rate"], timeout: float = 120):
        self.callback = callback  # (title, text), e.g. for the debug feed
        self.rate = rate
        self.timeout = timeout
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._engine = None
        self._playing = threading.Event()
        self._utterance = 0

    def is_playing(self) -> bool:
        return self._playing.is_set()

    def speak(self, text: str, language: str = "English", title: Optional[str] = None):
        """Speak text and return when playback has finished"""
        if not text:
            return
        self.stop()
        with self._lock:
            self._utterance += 1
            utterance = self._utterance
            self._playing.set()

        if self.callback:
            self.callback(title or "Narration", text)

        try:
            self._play(text, voice_for(language), utterance)
        finally:
            with self._lock:
                if self._utterance == utterance:
                    self._process = None
                    self._playing.clear()

    def _play(self, text: str, voice: str, utterance: int):
        try:
            with self._lock:
                if self._utterance != utterance:
                    return
                self._process = subprocess.Popen(
                    ["espeak", "-v", voice, "-s", str(self.rate), text],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
                process = self._process
            try:
                process.wait(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                process.kill()
        except FileNotFoundError:
            # Fallback: try pyttsx3
            try:
                import pyttsx3
                if self._engine is None:
                    self._engine = pyttsx3.init()
                    self._engine.setProperty("rate", self.rate)
                self._engine.say(text)
                self._engine.runAndWait()
            except Exception:
                print(f"[AUDIO] {text}")
        except Exception as e:
            print(f"Audio error: {e}")
            print(f"[AUDIO] {text}")

    def stop(self):
        """Stop current playback, if any"""
        with self._lock:
            process = self._process
            self._process = None
            self._utterance += 1
            self._playing.clear()
        if process is not None and process.poll() is None:
            process.terminate()
        if self._engine is not None:
            try:
                self._engine.stop()
            except Exception:
                pass

    def wait_until_idle(self, timeout: float = CONFIG["audio_wait_timeout"]) -> bool:
        """Block until nothing is playing or timeout expires. Returns True if idle."""
        event = threading.Event()
        waited = 0.0
        while self.is_playing() and waited < timeout:
            event.wait(0.2)
            waited += 0.2
        return not self.is_playing()
