"""Replica sessions and the ``Replicator`` facade over a store.

A ``ReplicaSession`` owns one store subscription, one coalescing scheduler
and one replica. Remote events go through the scheduler and are then routed
to the replica's apply methods. ``Replicator`` hands out replicas, reusing
the live session for a kind until it is destroyed, and passes plain writes
straight to the store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from replicant.config import ReplicantConfig
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
from replicant.ordered import OrderedReplica
from replicant.records import validate
from replicant.replica import Replica
from replicant.scalar import ScalarReplica
from replicant.scheduler import Clock, CoalescingScheduler, Timer
from replicant.store import RemoteStore, SubscriptionKind

__all__ = ["ReplicaSession", "Replicator"]

logger = logging.getLogger("replicant.session")


class ReplicaSession[R: Replica]:
    """Wires one replica to one store subscription.

    Parameters
    ----------
    store : RemoteStore
        Store to subscribe to.
    factory : Callable[..., R]
        Replica class (or factory) called with ``(store, destroy_fn, **options)``.
    kind : SubscriptionKind
        ``"child"`` for ordered replicas, ``"value"`` for scalar ones.
    scheduler : CoalescingScheduler
        Batches events before they reach the replica.
    **options : Any
        Extra keyword arguments for *factory*.
    """

    def __init__(
        self,
        store: RemoteStore,
        factory: Callable[..., R],
        kind: SubscriptionKind,
        scheduler: CoalescingScheduler,
        **options: Any,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._destroyed = False
        self._replica: R | None = factory(store, self.destroy, **options)
        self._subscription = store.subscribe(kind, scheduler.wrap(self._route))

    @property
    def store(self) -> RemoteStore:
        return self._store

    @property
    def replica(self) -> R | None:
        return self._replica

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        """Stop event delivery and drop the replica. Idempotent."""
        if self._destroyed:
            return
        self._destroyed = True
        self._store.unsubscribe(self._subscription)
        self._scheduler.cancel()
        replica, self._replica = self._replica, None
        if replica is not None:
            replica.destroy()
        logger.debug("Session on %s destroyed", self._store.key)

    def _route(self, event: RemoteEvent) -> None:
        replica: Any = self._replica
        if replica is None:
            return
        match event:
            case ChildAdded(id=key, value=value, priority=priority, prev_id=prev_id):
                replica.apply_added(key, value, priority, prev_id)
            case ChildRemoved(id=key):
                replica.apply_removed(key)
            case ChildMoved(id=key, prev_id=prev_id):
                replica.apply_moved(key, prev_id)
            case ChildChanged(id=key, value=value, priority=priority):
                replica.apply_changed(key, value, priority)
            case ValueChanged(value=value, priority=priority):
                replica.apply_value(value, priority)
            case SnapshotComplete():
                replica.apply_loaded()
            case StoreError(cause=cause):
                replica.apply_error(cause)
            case _:
                logger.warning("Unhandled remote event: %r", event)


class Replicator:
    """Entry point: replicas and direct writes for one store location.

    Parameters
    ----------
    store : RemoteStore
        Location to mirror.
    config : ReplicantConfig | None
        Factories and batching; defaults to ``ReplicantConfig()``.
    clock, timer :
        Passed to each session's ``CoalescingScheduler``.

    Examples
    --------
    >>> replicator = Replicator(MemoryStore("todos"))
    >>> todos = replicator.as_ordered()
    >>> replicator.as_ordered() is todos
    True
    """

    def __init__(
        self,
        store: RemoteStore,
        config: ReplicantConfig | None = None,
        *,
        clock: Clock | None = None,
        timer: Timer | None = None,
    ) -> None:
        self._store = store
        self._config = config or ReplicantConfig()
        self._clock = clock
        self._timer = timer
        self._ordered: ReplicaSession[OrderedReplica] | None = None
        self._scalar: ReplicaSession[ScalarReplica] | None = None
        self._assert_valid_config(self._config)

    @property
    def store(self) -> RemoteStore:
        return self._store

    @property
    def config(self) -> ReplicantConfig:
        return self._config

    def as_ordered(self) -> OrderedReplica:
        """Live ordered replica of the store's children."""
        if self._ordered is None or self._ordered.is_destroyed:
            self._ordered = self._open(self._config.ordered_factory, "child")
        return self._live(self._ordered)

    def as_scalar(self) -> ScalarReplica:
        """Live scalar replica of the store's whole value."""
        if self._scalar is None or self._scalar.is_destroyed:
            self._scalar = self._open(self._config.scalar_factory, "value")
        return self._live(self._scalar)

    async def push(self, value: Any) -> str:
        validate(value)
        return await self._store.push(value)

    async def set(self, value: Any, key: str | None = None) -> None:
        validate(value)
        await self._store.write(value, key)

    async def update(self, values: Mapping[str, Any], key: str | None = None) -> None:
        validate(values)
        await self._store.update(values, key)

    async def remove(self, key: str | None = None) -> None:
        await self._store.delete(key)

    async def transaction(
        self, update_fn: Callable[[Any], Any], key: str | None = None
    ) -> Any | None:
        """Replace the value at *key* (or the whole location) atomically.

        *update_fn* receives the current value and returns the new one, or
        ``None`` to abort.

        Returns
        -------
        Any | None
            The committed value, or ``None`` if the transaction was aborted.

        Raises
        ------
        ValidationFailure
            If *update_fn* returns content the store cannot hold.
        RemoteFailure
            If the store rejects the write.
        """

        def checked(current: Any) -> Any:
            result = update_fn(current)
            if result is not None:
                validate(result)
            return result

        return await self._store.transaction(checked, key)

    @staticmethod
    def _live[R: Replica](session: ReplicaSession[R]) -> R:
        replica = session.replica
        if replica is None:
            msg = f"Session on {session.store.key} has no live replica"
            raise RuntimeError(msg)
        return replica

    def _open[R: Replica](
        self, factory: Callable[..., R], kind: SubscriptionKind
    ) -> ReplicaSession[R]:
        scheduler = CoalescingScheduler(
            self._config.batch.wait,
            self._config.batch.max_wait,
            clock=self._clock,
            timer=self._timer,
        )
        logger.debug("Opening %s session on %s", kind, self._store.key)
        return ReplicaSession(
            self._store,
            factory,
            kind,
            scheduler,
            record_factory=self._config.record_factory,
            merger=self._config.merger,
        )

    @staticmethod
    def _assert_valid_config(config: ReplicantConfig) -> None:
        if not callable(config.ordered_factory):
            msg = "config.ordered_factory must be callable"
            raise TypeError(msg)
        if not callable(config.scalar_factory):
            msg = "config.scalar_factory must be callable"
            raise TypeError(msg)
