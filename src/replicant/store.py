"""Remote store protocol and an in-process implementation.

Provides the ``RemoteStore`` protocol consumed by replica sessions, the
``Subscription`` handle it returns, and ``MemoryStore``, a single-location
store that keeps its children in memory and emits the same event stream a
networked backend would.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import msgpack

from replicant.errors import RemoteFailure
from replicant.events import (
    ChildAdded,
    ChildChanged,
    ChildMoved,
    ChildRemoved,
    RemoteEvent,
    SnapshotComplete,
    StoreError,
    ValueChanged,
)
from replicant.records import PRIORITY_KEY, VALUE_KEY

__all__ = [
    "MemoryStore",
    "RemoteStore",
    "Subscription",
    "SubscriptionKind",
    "priority_order",
]

logger = logging.getLogger("replicant.store")

type SubscriptionKind = Literal["child", "value"]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by ``RemoteStore.subscribe``."""

    id: int
    kind: SubscriptionKind


class RemoteStore(Protocol):
    """Protocol for the backing store a replica mirrors.

    A ``"child"`` subscription first delivers every existing child as
    ``ChildAdded`` (in order, each with the id of its predecessor) and then
    ``SnapshotComplete``, before any live event. A ``"value"`` subscription
    delivers ``ValueChanged`` followed by ``SnapshotComplete``. Failures of
    the subscription arrive as ``StoreError``; write failures raise
    ``RemoteFailure``.

    Examples
    --------
    >>> store: RemoteStore = MemoryStore("todos")
    """

    @property
    def key(self) -> str:
        """Key of the location this store points at."""
        ...

    def subscribe(
        self, kind: SubscriptionKind, on_event: Callable[[RemoteEvent], None]
    ) -> Subscription: ...

    def unsubscribe(self, subscription: Subscription) -> None: ...

    async def push(self, value: Any) -> str:
        """Append a child under a store-generated key and return the key."""
        ...

    async def write(self, value: Any, key: str | None = None) -> None:
        """Replace the child at *key*, or the whole location when ``None``."""
        ...

    async def update(self, values: Mapping[str, Any], key: str | None = None) -> None:
        """Set several fields at once; ``None`` values delete."""
        ...

    async def delete(self, key: str | None = None) -> None: ...

    async def transaction(
        self, update_fn: Callable[[Any], Any], key: str | None = None
    ) -> Any | None:
        """Atomically replace the value at *key* with ``update_fn(current)``.

        Returning ``None`` from *update_fn* aborts without writing. Resolves
        with the committed value, or ``None`` when aborted.
        """
        ...


@dataclass
class _Entry:
    value: Any
    priority: Any = None


@dataclass
class _Listener:
    subscription: Subscription
    on_event: Callable[[RemoteEvent], None] = field(repr=False)


def priority_order(key: str, priority: Any) -> tuple[int, float, str, str]:
    """Sort key for children: no priority, then numbers, then strings, then key."""
    match priority:
        case None:
            return (0, 0.0, "", key)
        case int() | float():
            return (1, float(priority), "", key)
        case _:
            return (2, 0.0, str(priority), key)


def _split(value: Any) -> tuple[Any, Any]:
    """Separate a written payload into content and priority."""
    if not isinstance(value, Mapping):
        return value, None
    priority = value.get(PRIORITY_KEY)
    if VALUE_KEY in value:
        return value[VALUE_KEY], priority
    content = {k: v for k, v in value.items() if k not in (VALUE_KEY, PRIORITY_KEY)}
    return (content or None), priority


class MemoryStore:
    """In-memory remote store for one location.

    The location either holds a primitive or a set of children; writing a
    mapping replaces the children, writing a primitive replaces them all with
    that value. Events are delivered synchronously to subscribers, and write
    coroutines yield once to the loop before acknowledging.

    Parameters
    ----------
    key : str
        Location key reported in ``ValueChanged`` events.
    value : Any
        Initial content, in the same format ``write`` accepts.

    Examples
    --------
    >>> store = MemoryStore("todos", {"a": {"title": "milk"}})
    >>> key = await store.push({"title": "eggs"})
    >>> len(store.keys())
    2
    """

    def __init__(self, key: str = "root", value: Any = None) -> None:
        self._key = key
        self._children: dict[str, _Entry] = {}
        self._primitive: Any = None
        self._priority: Any = None
        self._listeners: dict[int, _Listener] = {}
        self._ids = itertools.count(1)
        self._last_stamp = 0
        self._denied: Any = None
        if value is not None:
            self._replace(value)

    @property
    def key(self) -> str:
        return self._key

    @property
    def value(self) -> Any:
        """Current content of the location (children without priorities)."""
        if self._primitive is not None:
            return copy.deepcopy(self._primitive)
        if not self._children:
            return None
        return {k: copy.deepcopy(self._children[k].value) for k in self._order()}

    @property
    def priority(self) -> Any:
        return self._priority

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def child(self, key: str) -> Any:
        entry = self._children.get(key)
        return None if entry is None else copy.deepcopy(entry.value)

    def child_priority(self, key: str) -> Any:
        entry = self._children.get(key)
        return None if entry is None else entry.priority

    def keys(self) -> list[str]:
        return self._order()

    # -- subscriptions ------------------------------------------------------

    def subscribe(
        self, kind: SubscriptionKind, on_event: Callable[[RemoteEvent], None]
    ) -> Subscription:
        if kind not in ("child", "value"):
            msg = f"Unknown subscription kind: {kind!r}"
            raise ValueError(msg)
        subscription = Subscription(id=next(self._ids), kind=kind)
        self._listeners[subscription.id] = _Listener(subscription, on_event)
        logger.debug("Subscribed %s to %s (%s)", subscription.id, self._key, kind)

        if kind == "child":
            prev: str | None = None
            for key in self._order():
                entry = self._children[key]
                on_event(
                    ChildAdded(key, copy.deepcopy(entry.value), entry.priority, prev)
                )
                prev = key
        else:
            on_event(ValueChanged(self._key, self.value, self._priority))
        on_event(SnapshotComplete())
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._listeners.pop(subscription.id, None) is not None:
            logger.debug("Unsubscribed %s from %s", subscription.id, self._key)

    def fail(self, cause: Any) -> None:
        """Cancel every subscription with ``StoreError(cause)``."""
        listeners = list(self._listeners.values())
        self._listeners.clear()
        logger.warning("Cancelling %d subscription(s) on %s: %s", len(listeners), self._key, cause)
        for listener in listeners:
            listener.on_event(StoreError(cause))

    def deny_writes(self, cause: Any = "PERMISSION_DENIED") -> None:
        """Make every following write fail with ``RemoteFailure(cause)``."""
        self._denied = cause

    def allow_writes(self) -> None:
        self._denied = None

    # -- writes -------------------------------------------------------------

    async def push(self, value: Any) -> str:
        self._check_writable()
        key = self._next_key()
        self._commit(lambda: self._set_child(key, value))
        await asyncio.sleep(0)
        return key

    async def write(self, value: Any, key: str | None = None) -> None:
        self._check_writable()
        if key is None:
            self._commit(lambda: self._replace(value))
        else:
            self._commit(lambda: self._set_child(key, value))
        await asyncio.sleep(0)

    async def update(self, values: Mapping[str, Any], key: str | None = None) -> None:
        self._check_writable()

        def apply() -> None:
            if key is None:
                for name, value in values.items():
                    self._set_child(name, value)
                return
            entry = self._children.get(key)
            current = entry.value if entry and isinstance(entry.value, Mapping) else {}
            merged = {**current, **values}
            merged = {k: v for k, v in merged.items() if v is not None}
            if entry is not None and entry.priority is not None:
                merged.setdefault(PRIORITY_KEY, entry.priority)
            self._set_child(key, merged)

        self._commit(apply)
        await asyncio.sleep(0)

    async def delete(self, key: str | None = None) -> None:
        self._check_writable()
        if key is None:
            self._commit(lambda: self._replace(None))
        else:
            self._commit(lambda: self._set_child(key, None))
        await asyncio.sleep(0)

    async def transaction(
        self, update_fn: Callable[[Any], Any], key: str | None = None
    ) -> Any | None:
        self._check_writable()
        current = self.value if key is None else self.child(key)
        result = update_fn(current)
        if result is None:
            logger.debug("Transaction on %s aborted", key or self._key)
            await asyncio.sleep(0)
            return None
        if key is None:
            self._commit(lambda: self._replace(result))
        else:
            self._commit(lambda: self._set_child(key, result))
        await asyncio.sleep(0)
        return self.value if key is None else self.child(key)

    # -- snapshots ----------------------------------------------------------

    def export(self) -> bytes:
        """Dump key, priority and content as msgpack bytes."""
        return msgpack.packb(
            {
                "k": self._key,
                "p": self._priority,
                "v": self._primitive,
                "c": {k: [e.value, e.priority] for k, e in self._children.items()},
            },
            use_bin_type=True,
        )

    @classmethod
    def restore(cls, data: bytes) -> MemoryStore:
        """Rebuild a store from ``export()`` output."""
        raw = msgpack.unpackb(data, raw=False)
        store = cls(raw["k"])
        store._priority = raw["p"]
        store._primitive = raw["v"]
        store._children = {k: _Entry(v, p) for k, (v, p) in raw["c"].items()}
        return store

    # -- internals ----------------------------------------------------------

    def _check_writable(self) -> None:
        if self._denied is not None:
            logger.warning("Write to %s denied: %s", self._key, self._denied)
            raise RemoteFailure(self._denied)

    def _next_key(self) -> str:
        stamp = max(time.time_ns(), self._last_stamp + 1)
        self._last_stamp = stamp
        return f"-{stamp:020d}"

    def _order(self) -> list[str]:
        return sorted(
            self._children,
            key=lambda k: priority_order(k, self._children[k].priority),
        )

    def _set_child(self, key: str, value: Any) -> None:
        content, priority = _split(value)
        if content is None:
            self._children.pop(key, None)
            return
        self._primitive = None
        self._children[key] = _Entry(copy.deepcopy(content), priority)

    def _replace(self, value: Any) -> None:
        content, priority = _split(value)
        self._children.clear()
        self._primitive = None
        self._priority = priority
        if isinstance(content, Mapping):
            for key, child in content.items():
                self._set_child(key, child)
        else:
            self._primitive = copy.deepcopy(content)

    def _commit(self, mutate: Callable[[], None]) -> None:
        before = {k: (e.value, e.priority) for k, e in self._children.items()}
        before_order = self._order()
        before_value = (self.value, self._priority)

        mutate()

        after_order = self._order()
        self._emit_children(before, before_order, after_order)
        if (self.value, self._priority) != before_value:
            event = ValueChanged(self._key, self.value, self._priority)
            self._emit("value", event)

    def _emit_children(
        self,
        before: dict[str, tuple[Any, Any]],
        before_order: list[str],
        after_order: list[str],
    ) -> None:
        before_prev = dict(zip(before_order, [None, *before_order]))
        after_prev = dict(zip(after_order, [None, *after_order]))

        for key in before_order:
            if key not in self._children:
                self._emit("child", ChildRemoved(key))

        for key in after_order:
            entry = self._children[key]
            prev = after_prev[key]
            if key not in before:
                event: RemoteEvent = ChildAdded(
                    key, copy.deepcopy(entry.value), entry.priority, prev
                )
                self._emit("child", event)
                continue
            old_value, old_priority = before[key]
            if (old_value, old_priority) != (entry.value, entry.priority):
                self._emit(
                    "child", ChildChanged(key, copy.deepcopy(entry.value), entry.priority)
                )
            if old_priority != entry.priority and before_prev[key] != prev:
                self._emit("child", ChildMoved(key, prev))

    def _emit(self, kind: SubscriptionKind, event: RemoteEvent) -> None:
        for listener in list(self._listeners.values()):
            if listener.subscription.kind == kind:
                listener.on_event(event)
