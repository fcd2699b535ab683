"""State shared by ordered and scalar replicas.

Both kinds own a one-shot ``loaded`` future, a watcher registry and a
permanent destroyed flag, and both are torn down the same way when the
store reports a terminal error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from replicant.errors import Destroyed, RemoteFailure, ReplicaError
from replicant.events import WatchCallback, WatchEvent, Watchers
from replicant.records import (
    ContentMerger,
    DefaultMerger,
    DefaultRecordFactory,
    RecordFactory,
)
from replicant.store import RemoteStore

__all__ = ["Replica"]

logger = logging.getLogger("replicant.replica")


def _consume(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()


class Replica:
    """Base class for replicas; not used directly.

    Parameters
    ----------
    store : RemoteStore
        Store the replica mirrors and writes to.
    destroy_fn : Callable[[], None]
        Called once on ``destroy()`` to stop event delivery (normally
        ``ReplicaSession.destroy``).
    record_factory : RecordFactory | None
        Builds records for new remote values.
    merger : ContentMerger | None
        Applies changed remote values onto existing records.
    """

    def __init__(
        self,
        store: RemoteStore,
        destroy_fn: Callable[[], None],
        *,
        record_factory: RecordFactory | None = None,
        merger: ContentMerger | None = None,
    ) -> None:
        self._store = store
        self._destroy_fn = destroy_fn
        self._record_factory = record_factory or DefaultRecordFactory()
        self._merger = merger or DefaultMerger()
        self._watchers = Watchers()
        self._destroyed = False
        self._loaded: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._loaded.add_done_callback(_consume)

    @property
    def store(self) -> RemoteStore:
        return self._store

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def is_loaded(self) -> bool:
        return self._loaded.done() and not self._loaded.exception()

    async def loaded(
        self,
        on_resolve: Callable[[Any], Any] | None = None,
        on_reject: Callable[[ReplicaError], Any] | None = None,
    ) -> Any:
        """Wait until the initial snapshot has been applied.

        Resolves with the replica itself. The optional callbacks are applied
        to the outcome, like continuations chained onto the load.

        Raises
        ------
        Destroyed
            If the replica was destroyed before the snapshot completed.
        RemoteFailure
            If the subscription failed before the snapshot completed.
        """
        try:
            result = await asyncio.shield(self._loaded)
        except ReplicaError as exc:
            if on_reject is None:
                raise
            return on_reject(exc)
        return result if on_resolve is None else on_resolve(result)

    def watch(self, callback: WatchCallback, context: Any = None) -> Callable[[], None]:
        """Register *callback* for every applied change.

        Returns a function removing exactly this ``(callback, context)``
        registration.
        """
        return self._watchers.add(callback, context)

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self._teardown()
        if not self._loaded.done():
            self._loaded.set_exception(Destroyed("loaded", type(self).__name__))
        logger.debug("Destroyed %s for %s", type(self).__name__, self._store.key)
        self._destroy_fn()

    def apply_loaded(self) -> None:
        if self._loaded.done():
            return
        if self._destroyed:
            self._loaded.set_exception(Destroyed("loaded", type(self).__name__))
        else:
            self._loaded.set_result(self)

    def apply_error(self, cause: Any) -> None:
        if self._destroyed:
            return
        logger.error("Subscription to %s cancelled: %s", self._store.key, cause)
        self._watchers.notify(WatchEvent("error", self._store.key, error=cause))
        if not self._loaded.done():
            self._loaded.set_exception(RemoteFailure(cause))
        self.destroy()

    def _teardown(self) -> None:
        self._watchers.clear()

    def _assert_alive(self, method: str) -> None:
        if self._destroyed:
            raise Destroyed(method, type(self).__name__)
