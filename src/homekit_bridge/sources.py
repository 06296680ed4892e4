"""Event source adapters.

A source pushes ``Event`` records into a sink without flow control. The sink is
the controller's thread-safe ``submit``, so sources are free to run on their
own threads.
"""

from __future__ import annotations

import io
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Protocol, TextIO

from pydantic import ValidationError

from homekit_bridge.logging_abstraction import get_logger
from homekit_bridge.structs import SOURCE_KINDS, Event

logger = get_logger(__name__)

EventSink = Callable[[Event], None]


class EventSource(Protocol):
    def start(self, sink: EventSink) -> None:
        """Begin delivering events to ``sink``."""
        ...

    def stop(self) -> None:
        """Stop delivering events."""
        ...


def open_event_stream(path: Path | None) -> TextIO:
    """Open ``path`` (or stdin) for reading events.

    Undecodable bytes become U+FFFD instead of raising, so one bad line can
    never end the stream.
    """
    if path is not None:
        return path.open(encoding="utf-8", errors="replace")
    if isinstance(sys.stdin, io.TextIOWrapper):
        sys.stdin.reconfigure(errors="replace")
    return sys.stdin


class JsonLinesEventSource:
    """Reads one JSON event object per line from ``stream`` on a daemon thread.

    Example line::

        {"kind": "characteristic-updated", "accessory": "Sensor1",
         "characteristic": "Temperature", "value": "21.5"}
    """

    lp: str = "source:jsonl:"

    def __init__(self, stream: TextIO, on_eof: Callable[[], object] | None = None) -> None:
        self.stream: TextIO = stream
        self._on_eof: Callable[[], object] | None = on_eof
        self._stop: threading.Event = threading.Event()
        self._thread: threading.Thread | None = None
        self.delivered: int = 0
        self.skipped: int = 0

    def start(self, sink: EventSink) -> None:
        self._thread = threading.Thread(target=self._read_loop, args=(sink,), name="jsonl-event-source", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def parse_line(self, line: str) -> Event | None:
        line = line.strip()
        if not line or line.startswith("#"):
            return None
        try:
            event = Event.model_validate_json(line)
        except ValidationError as e:
            self.skipped += 1
            logger.warning("%s Skipping malformed event line: %s", self.lp, e.errors()[0]["msg"], extra={"line": line})
            return None
        if event.kind not in SOURCE_KINDS:
            self.skipped += 1
            logger.warning("%s Skipping %s event, only the bridge may log that kind", self.lp, event.kind.value)
            return None
        return event

    def _read_loop(self, sink: EventSink) -> None:
        try:
            self._pump(sink)
        except (OSError, ValueError):
            # strict decoding or a closed stream
            logger.exception("%s Event stream failed", self.lp)
        finally:
            logger.info("%s Event stream ended", self.lp, extra={"delivered": self.delivered, "skipped": self.skipped})
            if self._on_eof is not None and not self._stop.is_set():
                _ = self._on_eof()

    def _pump(self, sink: EventSink) -> None:
        for line in self.stream:
            if self._stop.is_set():
                break
            event = self.parse_line(line)
            if event is None:
                continue
            try:
                sink(event)
            except RuntimeError as e:
                # loop closed underneath us
                logger.warning("%s Dropping event, sink unavailable: %s", self.lp, e)
                break
            self.delivered += 1
