"""
Unit tests for the JSON-lines event source.
"""

import io
import json
import threading

import pytest

from homekit_bridge.sources import JsonLinesEventSource, open_event_stream
from homekit_bridge.structs import EventKind

UNDECODABLE = b'{"kind":"home-updated"}\n\xff\xfe\n{"kind":"room-updated","room":"Kitchen"}\n'


def _line(**fields) -> str:
    return json.dumps(fields) + "\n"


class TestParseLine:
    """Tests for JsonLinesEventSource.parse_line()"""

    def test_characteristic_update(self):
        source = JsonLinesEventSource(io.StringIO())

        event = source.parse_line(
            _line(kind="characteristic-updated", accessory="Sensor1", characteristic="Temperature", value="21.5")
        )

        assert event is not None
        assert event.kind == EventKind.CHARACTERISTIC_UPDATED
        assert event.is_characteristic_update
        assert event.value == "21.5"

    def test_explicit_timestamp(self):
        source = JsonLinesEventSource(io.StringIO())

        event = source.parse_line(_line(kind="home-updated", timestamp="2024-05-01T12:00:00Z"))

        assert event.timestamp.year == 2024
        assert event.timestamp.utcoffset().total_seconds() == 0

    def test_blank_and_comment_lines_ignored(self):
        source = JsonLinesEventSource(io.StringIO())

        assert source.parse_line("\n") is None
        assert source.parse_line("   # replayed from living room\n") is None
        assert source.skipped == 0

    def test_malformed_lines_counted(self):
        source = JsonLinesEventSource(io.StringIO())

        assert source.parse_line("{not json}\n") is None
        assert source.parse_line(_line(kind="no-such-kind")) is None
        assert source.skipped == 2

    @pytest.mark.parametrize("kind", ["publish-success", "timeout", "connect-failure", "info"])
    def test_bridge_only_kinds_rejected(self, kind):
        source = JsonLinesEventSource(io.StringIO())

        assert source.parse_line(_line(kind=kind, topic="homekit/temp", detail="{}")) is None
        assert source.skipped == 1


class TestReadLoop:
    """Tests for start()/stop() on a background thread"""

    def _run(self, text, sink=None):
        done = threading.Event()
        received = []
        source = JsonLinesEventSource(io.StringIO(text), on_eof=done.set)
        source.start(sink or received.append)
        assert done.wait(5)
        return source, received

    def test_delivers_events_in_order(self):
        text = "".join(
            _line(kind="characteristic-updated", accessory="Sensor1", characteristic="Temperature", value=str(i))
            for i in range(10)
        )

        source, received = self._run(text)

        assert [e.value for e in received] == [str(i) for i in range(10)]
        assert source.delivered == 10

    def test_skips_bad_lines_and_continues(self):
        text = _line(kind="accessory-added", accessory="Lamp") + "garbage\n" + _line(kind="accessory-removed", accessory="Lamp")

        source, received = self._run(text)

        assert [e.kind for e in received] == [EventKind.ACCESSORY_ADDED, EventKind.ACCESSORY_REMOVED]
        assert source.skipped == 1

    def test_unavailable_sink_stops_reading(self):
        calls = []

        def _closed(event):
            calls.append(event)
            msg = "Event loop is closed"
            raise RuntimeError(msg)

        text = _line(kind="home-updated") * 3

        source, _ = self._run(text, sink=_closed)

        assert len(calls) == 1
        assert source.delivered == 0

    def test_stop_suppresses_eof_callback(self):
        eof = threading.Event()
        source = JsonLinesEventSource(io.StringIO(_line(kind="home-updated")), on_eof=eof.set)
        source.stop()

        source.start(lambda _event: None)
        source.join(5)

        assert not eof.is_set()
        assert source.delivered == 0


class TestUndecodableInput:
    """Invalid UTF-8 never ends the stream early"""

    def test_replacement_decoding_keeps_reading(self):
        done = threading.Event()
        received = []
        stream = io.TextIOWrapper(io.BytesIO(UNDECODABLE), encoding="utf-8", errors="replace")
        source = JsonLinesEventSource(stream, on_eof=done.set)

        source.start(received.append)

        assert done.wait(5)
        assert [e.kind for e in received] == [EventKind.HOME_UPDATED, EventKind.ROOM_UPDATED]
        assert source.skipped == 1

    def test_strict_decoding_error_still_signals_eof(self):
        done = threading.Event()
        received = []
        stream = io.TextIOWrapper(io.BytesIO(UNDECODABLE), encoding="utf-8")
        source = JsonLinesEventSource(stream, on_eof=done.set)

        source.start(received.append)

        assert done.wait(5)
        source.join(5)
        assert len(received) <= 1

    def test_open_event_stream_replaces_bad_bytes(self, tmp_path):
        path = tmp_path / "events.jsonl"
        path.write_bytes(UNDECODABLE)
        done = threading.Event()
        received = []

        with open_event_stream(path) as stream:
            source = JsonLinesEventSource(stream, on_eof=done.set)
            source.start(received.append)
            assert done.wait(5)

        assert [e.kind for e in received] == [EventKind.HOME_UPDATED, EventKind.ROOM_UPDATED]
