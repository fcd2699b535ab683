"""Synchronized single record, optionally bound to an external location."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any

from replicant.binding import Binding, ViewBinder
from replicant.errors import AlreadyBound
from replicant.events import WatchEvent
from replicant.records import ID_FIELD, PRIORITY_FIELD, Record, to_json
from replicant.replica import Replica

__all__ = ["ScalarReplica"]

logger = logging.getLogger("replicant.scalar")


class ScalarReplica(Replica):
    """Local mirror of the whole value at a store location.

    Content is readable like a mapping (``replica["name"]``); primitive
    values are exposed through ``value``.

    Examples
    --------
    >>> profile = Replicator(MemoryStore("profile")).as_scalar()
    >>> await profile.loaded()
    >>> scope = Scope()
    >>> unbind = await profile.bind_to(scope, "profile")
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._record = Record(id=self._store.key)
        self._binding: Binding | None = None

    def __getitem__(self, name: str) -> Any:
        return self._record.fields[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self._record.fields[name] = value

    def __contains__(self, name: object) -> bool:
        return name in self._record.fields

    def __repr__(self) -> str:
        return f"ScalarReplica({self.id!r}, fields={self._record.fields!r})"

    @property
    def id(self) -> str:
        return self._record.id

    @property
    def priority(self) -> Any:
        return self._record.priority

    @priority.setter
    def priority(self, value: Any) -> None:
        self._record.priority = value

    @property
    def fields(self) -> dict[str, Any]:
        return self._record.fields

    @property
    def value(self) -> Any:
        return self._record.value

    @property
    def record(self) -> Record:
        return self._record

    @property
    def binding(self) -> Binding | None:
        return self._binding

    def get(self, name: str, default: Any = None) -> Any:
        return self._record.fields.get(name, default)

    def snapshot(self) -> dict[str, Any]:
        """Content plus ``$id`` / ``$priority``, as exposed to bound locations."""
        data = copy.deepcopy(self._record.fields)
        data[ID_FIELD] = self._record.id
        data[PRIORITY_FIELD] = self._record.priority
        return data

    async def save(self) -> None:
        """Write the current local content over the store location."""
        self._assert_alive("save")
        await self._store.write(to_json(self._record))

    async def bind_to(self, binder: ViewBinder, path: str) -> Callable[[], None]:
        """Keep ``binder[path]`` and this replica in sync once loaded.

        Returns the function that removes the binding.

        Raises
        ------
        AlreadyBound
            If a binding is already active.
        """
        await self.loaded()
        self._assert_alive("bind_to")
        if self._binding is not None:
            raise AlreadyBound()
        self._binding = Binding(self, binder, path)
        logger.debug("Bound %s to %s", self.id, path)
        return self._binding.unbind

    def apply_value(self, value: Any, priority: Any) -> None:
        if self._destroyed:
            return
        if not self._merger.merge(self._record, value, priority):
            return
        if self._binding is not None:
            self._binding.update()
        self._watchers.notify(WatchEvent("updated", self.id))

    def _release_binding(self, binding: Binding) -> None:
        if self._binding is binding:
            self._binding = None

    def _teardown(self) -> None:
        super()._teardown()
        if self._binding is not None:
            self._binding.unbind()
        self._record.fields.clear()
