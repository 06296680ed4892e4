"""Bounded, ordered log of received and produced events."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterator

from homekit_bridge.const import EVENT_LOG_CAPACITY
from homekit_bridge.structs import Event

EventListener = Callable[[Event], object]


class EventLog:
    """Append-only buffer that evicts its oldest entries beyond ``capacity``.

    Listeners are called synchronously with each newly appended event.
    Not thread-safe: only the controller's event loop appends to it.
    """

    def __init__(self, capacity: int = EVENT_LOG_CAPACITY) -> None:
        if capacity < 1:
            msg = f"capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self.capacity: int = capacity
        self._entries: deque[Event] = deque(maxlen=capacity)
        self._listeners: list[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def append(self, event: Event) -> None:
        self._entries.append(event)
        for listener in self._listeners:
            _ = listener(event)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Event]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> Event:
        return self._entries[index]
