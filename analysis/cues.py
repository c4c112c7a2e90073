from __future__ import annotations

import logging
import queue
import threading
from typing import Optional, Protocol


logger = logging.getLogger(__name__)


class SpeechSink(Protocol):
    def speak(self, text: str) -> None:
        """Fire-and-forget; a new call overrides any pending utterance."""


class NullSink:
    def speak(self, text: str) -> None:
        return None


class Pyttsx3Sink:
    """
    Offline text-to-speech on a worker thread.

    Only the newest text is kept: a call made while the previous cue is still queued
    replaces it, and a cue picked up while another is being spoken stops that one first.
    The engine is only ever touched from the worker, which pumps it with iterate().
    """

    def __init__(self, rate: int = 160, poll_seconds: float = 0.05) -> None:
        try:
            import pyttsx3  # type: ignore  # noqa: F401
        except ImportError as exc:
            raise ImportError("pyttsx3 is required for Pyttsx3Sink. Install with `pip install pyttsx3`") from exc
        self.rate = int(rate)
        self.poll_seconds = float(poll_seconds)
        self._q: "queue.Queue[Optional[str]]" = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._worker, name="formcue-tts", daemon=True)
        self._thread.start()

    def _worker(self) -> None:
        # pyttsx3 engines must be created on the thread that drives them
        import pyttsx3  # type: ignore

        engine = pyttsx3.init()
        engine.setProperty("rate", self.rate)
        engine.startLoop(False)
        try:
            while True:
                try:
                    text = self._q.get(timeout=self.poll_seconds)
                except queue.Empty:
                    text = ""
                if text is None:
                    break
                try:
                    if text:
                        engine.stop()
                        engine.say(text)
                    engine.iterate()
                except RuntimeError as exc:
                    logger.warning("speech failed: %s", exc)
        finally:
            engine.endLoop()

    def speak(self, text: str) -> None:
        self._replace(text)

    def close(self) -> None:
        self._replace(None)
        self._thread.join(timeout=2.0)

    def _replace(self, item: Optional[str]) -> None:
        with self._lock:
            try:
                self._q.get_nowait()
            except queue.Empty:
                pass
            self._q.put_nowait(item)


class CueDispatcher:
    """
    Rate-limits coaching cues before they reach the speech sink.

    - the same text is suppressed until `hold_seconds` after its last emission
    - a different text is emitted immediately (the sink cancels what it was saying)
    - empty text is never emitted
    """

    def __init__(self, hold_seconds: float, sink: Optional[SpeechSink] = None) -> None:
        self.hold_seconds = float(hold_seconds)
        self.sink = sink
        self.reset()

    def reset(self) -> None:
        self.last_text = ""
        self.until = float("-inf")

    def dispatch(self, text: str, now: float) -> Optional[str]:
        if not text:
            return None
        if text == self.last_text and now < self.until:
            return None
        self.last_text = text
        self.until = now + self.hold_seconds
        if self.sink is not None:
            self.sink.speak(text)
        return text
