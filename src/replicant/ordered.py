"""Synchronized ordered collection of records.

``OrderedReplica`` mirrors the children of a remote location. The local
order is materialized from the ``prev_id`` carried by added and moved
events; priorities never decide positions locally.

Writes never touch the local list directly: ``add``, ``save`` and
``remove`` go to the store, and the store's events bring the change back.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, overload

from replicant.errors import InvalidReference
from replicant.events import WatchEvent
from replicant.records import Record, to_json, validate
from replicant.replica import Replica

__all__ = ["OrderedReplica"]

logger = logging.getLogger("replicant.ordered")


class OrderedReplica(Replica, Sequence[Record]):
    """Read-only sequence of records kept in sync with a remote collection.

    Examples
    --------
    >>> replicator = Replicator(MemoryStore("todos"))
    >>> todos = replicator.as_ordered()
    >>> await todos.loaded()
    >>> key = await todos.add({"title": "milk"})
    >>> todos.get_record(key)  # after the next flush
    Record(id='-0000...', fields={'title': 'milk'}, priority=None)
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._list: list[Record] = []

    @overload
    def __getitem__(self, index: int) -> Record: ...

    @overload
    def __getitem__(self, index: slice) -> list[Record]: ...

    def __getitem__(self, index: int | slice) -> Record | list[Record]:
        return self._list[index]

    def __len__(self) -> int:
        return len(self._list)

    def __repr__(self) -> str:
        keys = [rec.id for rec in self._list]
        return f"OrderedReplica({self._store.key!r}, keys={keys!r})"

    @property
    def records(self) -> list[Record]:
        return list(self._list)

    # -- writes -------------------------------------------------------------

    async def add(self, value: Any) -> str:
        """Append *value* under a store-assigned key and return that key.

        The record shows up locally once the matching added event is applied.
        """
        self._assert_alive("add")
        validate(value)
        return await self._store.push(value)

    async def save(self, index_or_record: int | Record) -> str:
        """Write the local content of a record back to the store."""
        self._assert_alive("save")
        record = self._resolve(index_or_record)
        if record is None:
            raise InvalidReference(index_or_record)
        await self._store.write(to_json(record), record.id)
        return record.id

    async def remove(self, index_or_record: int | Record) -> str:
        """Delete a record at the store; the local list follows on the event."""
        self._assert_alive("remove")
        key = self.key_at(index_or_record)
        if key is None:
            raise InvalidReference(index_or_record)
        await self._store.delete(key)
        return key

    # -- lookups ------------------------------------------------------------

    def key_at(self, index_or_record: int | Record) -> str | None:
        record = self._resolve(index_or_record)
        return None if record is None else record.id

    def index_for(self, key: str) -> int:
        """Position of *key*, or -1. Linear scan."""
        for i, record in enumerate(self._list):
            if record.id == key:
                return i
        return -1

    def get_record(self, key: str) -> Record | None:
        i = self.index_for(key)
        return self._list[i] if i > -1 else None

    # -- remote events ------------------------------------------------------

    def apply_added(
        self, key: str, value: Any, priority: Any, prev_id: str | None
    ) -> None:
        if self._destroyed or self.get_record(key) is not None:
            return
        record = self._record_factory.create(key, value, priority)
        self._insert_after(record, prev_id)
        self._watchers.notify(WatchEvent("added", key, prev_id=prev_id))

    def apply_removed(self, key: str) -> None:
        if self._destroyed:
            return
        if self._splice_out(key) is not None:
            self._watchers.notify(WatchEvent("removed", key))

    def apply_moved(self, key: str, prev_id: str | None) -> None:
        if self._destroyed:
            return
        record = self._splice_out(key)
        if record is None:
            return
        self._insert_after(record, prev_id)
        self._watchers.notify(WatchEvent("moved", key, prev_id=prev_id))

    def apply_changed(self, key: str, value: Any, priority: Any) -> None:
        if self._destroyed:
            return
        record = self.get_record(key)
        if record is None:
            logger.debug("Dropping change for unknown record %s", key)
            return
        if self._merger.merge(record, value, priority):
            self._watchers.notify(WatchEvent("updated", key))

    # -- internals ----------------------------------------------------------

    def _teardown(self) -> None:
        super()._teardown()
        self._list.clear()

    def _insert_after(self, record: Record, prev_id: str | None) -> None:
        if prev_id is None:
            i = 0
        else:
            i = self.index_for(prev_id) + 1
            if i == 0:
                i = len(self._list)
        self._list.insert(i, record)

    def _splice_out(self, key: str) -> Record | None:
        i = self.index_for(key)
        if i > -1:
            return self._list.pop(i)
        return None

    def _resolve(self, index_or_record: int | Record) -> Record | None:
        match index_or_record:
            case bool():
                return None
            case int() if 0 <= index_or_record < len(self._list):
                return self._list[index_or_record]
            case Record():
                for record in self._list:
                    if record is index_or_record:
                        return record
        return None
