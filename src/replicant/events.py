"""Remote event variants and the watcher notifications replicas emit.

Remote events flow from the store into a replica session. ``WatchEvent`` is
what replicas hand to callbacks registered with ``watch()``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

__all__ = [
    "ChildAdded",
    "ChildChanged",
    "ChildEvent",
    "ChildMoved",
    "ChildRemoved",
    "RemoteEvent",
    "SnapshotComplete",
    "StoreError",
    "ValueChanged",
    "ValueEvent",
    "WatchCallback",
    "WatchEvent",
    "WatchKind",
    "Watchers",
]

logger = logging.getLogger("replicant.events")


@dataclass(frozen=True)
class ChildAdded:
    """A child exists at the store; ``prev_id`` is the child it sorts after."""

    id: str
    value: Any
    priority: Any = None
    prev_id: str | None = None


@dataclass(frozen=True)
class ChildRemoved:
    id: str


@dataclass(frozen=True)
class ChildMoved:
    id: str
    prev_id: str | None = None


@dataclass(frozen=True)
class ChildChanged:
    id: str
    value: Any
    priority: Any = None


@dataclass(frozen=True)
class ValueChanged:
    """The whole value at a location, delivered to scalar subscriptions."""

    id: str
    value: Any
    priority: Any = None


@dataclass(frozen=True)
class SnapshotComplete:
    """Marks the end of the initial snapshot of a subscription."""


@dataclass(frozen=True)
class StoreError:
    """Terminal failure of a subscription (e.g. permission denied)."""

    cause: Any


type ChildEvent = ChildAdded | ChildRemoved | ChildMoved | ChildChanged
type ValueEvent = ValueChanged
type RemoteEvent = ChildEvent | ValueEvent | SnapshotComplete | StoreError

type WatchKind = Literal["added", "removed", "moved", "updated", "error"]


@dataclass(frozen=True)
class WatchEvent:
    """Notification delivered to watchers after a change was applied.

    Parameters
    ----------
    event : WatchKind
        ``"added"``, ``"removed"``, ``"moved"``, ``"updated"`` or ``"error"``.
    key : str | None
        Id of the affected record.
    prev_id : str | None
        Id of the record now preceding ``key`` (``added`` / ``moved`` only).
    error : Any
        Cause of an ``error`` notification.

    Examples
    --------
    >>> WatchEvent("added", "a", prev_id=None)
    WatchEvent(event='added', key='a', prev_id=None, error=None)
    """

    event: WatchKind
    key: str | None = None
    prev_id: str | None = None
    error: Any = None


type WatchCallback = Callable[[WatchEvent], Any]


class Watchers:
    """Ordered registry of ``(callback, context)`` pairs.

    The context is only used to tell registrations apart: registering the
    same callback with two contexts yields two independent entries.
    """

    def __init__(self) -> None:
        self._entries: list[tuple[WatchCallback, Any]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, callback: WatchCallback, context: Any = None) -> Callable[[], None]:
        self._entries.append((callback, context))

        def off() -> None:
            for i, (cb, ctx) in enumerate(self._entries):
                if cb == callback and ctx is context:
                    del self._entries[i]
                    return

        return off

    def notify(self, event: WatchEvent) -> None:
        for callback, _ in tuple(self._entries):
            try:
                callback(event)
            except Exception:
                logger.exception("Watcher %r failed on %s", callback, event)

    def clear(self) -> None:
        self._entries.clear()
