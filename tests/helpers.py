"""Test doubles shared across the suite."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from replicant import MemoryStore, WatchEvent


@dataclass
class ManualHandle:
    when: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualClock:
    """Clock and timer driven by ``advance()`` instead of the event loop."""

    now: float = 0.0
    handles: list[ManualHandle] = field(default_factory=list)

    def __call__(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        self.now += seconds
        while True:
            self.handles = [h for h in self.handles if not h.cancelled]
            due = [h for h in self.handles if h.when <= self.now]
            if not due:
                return
            handle = min(due, key=lambda h: h.when)
            self.handles.remove(handle)
            handle.callback()


class RecordingStore(MemoryStore):
    """MemoryStore that remembers every write it accepted."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.writes: list[tuple[Any, str | None]] = []

    async def write(self, value: Any, key: str | None = None) -> None:
        self.writes.append((value, key))
        await super().write(value, key)


class Recorder:
    """Watch callback collecting every notification."""

    def __init__(self) -> None:
        self.events: list[WatchEvent] = []

    def __call__(self, event: WatchEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[str]:
        return [e.event for e in self.events]
