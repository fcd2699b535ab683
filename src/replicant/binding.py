"""Two-way binding between a scalar replica and an external location.

``ViewBinder`` is the protocol the host environment implements (a template
scope, a settings object, ...). ``Scope`` is a small in-process binder that
stores variables in a dict. ``Binding`` is the relation itself: it copies the
replica into the location on every replica update, and writes the location
back to the store when it is edited into something different.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol, TYPE_CHECKING

from replicant.errors import ReplicaError
from replicant.records import VALUE_FIELD, to_json

if TYPE_CHECKING:
    from replicant.scalar import ScalarReplica

__all__ = ["Binding", "Scope", "ViewBinder"]

logger = logging.getLogger("replicant.binding")


class ViewBinder(Protocol):
    """Access to external mutable locations and their change notifications."""

    def read(self, path: str) -> Any: ...

    def write(self, path: str, value: Any) -> None: ...

    def listen(self, path: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Call *callback* with the new value whenever *path* changes."""
        ...

    def on_teardown(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call *callback* once when the binder's scope goes away."""
        ...


class Scope:
    """Dict-backed ``ViewBinder``.

    Values are copied on the way in and out, and listeners fire only when a
    write changes the stored value by deep equality.

    Examples
    --------
    >>> scope = Scope()
    >>> off = scope.listen("profile", print)
    >>> scope["profile"] = {"name": "ada"}
    {'name': 'ada'}
    >>> scope["profile"] = {"name": "ada"}
    """

    def __init__(self, **variables: Any) -> None:
        self._vars: dict[str, Any] = copy.deepcopy(variables)
        self._listeners: dict[str, list[Callable[[Any], None]]] = {}
        self._teardown: list[Callable[[], None]] = []
        self._destroyed = False

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def read(self, path: str) -> Any:
        return copy.deepcopy(self._vars.get(path))

    def write(self, path: str, value: Any) -> None:
        previous = self._vars.get(path)
        self._vars[path] = copy.deepcopy(value)
        if previous == value:
            return
        for callback in list(self._listeners.get(path, ())):
            callback(self.read(path))

    def listen(self, path: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        callbacks = self._listeners.setdefault(path, [])
        callbacks.append(callback)

        def off() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return off

    def on_teardown(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._teardown.append(callback)

        def off() -> None:
            if callback in self._teardown:
                self._teardown.remove(callback)

        return off

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        callbacks, self._teardown = self._teardown, []
        for callback in callbacks:
            callback()
        self._listeners.clear()

    def __getitem__(self, path: str) -> Any:
        return self.read(path)

    def __setitem__(self, path: str, value: Any) -> None:
        self.write(path, value)


class Binding:
    """Active binding of a scalar replica to ``binder[path]``.

    Created by ``ScalarReplica.bind_to``; torn down by ``unbind()``, by the
    binder's teardown, or by destroying the replica.
    """

    def __init__(self, replica: ScalarReplica, binder: ViewBinder, path: str) -> None:
        self._replica = replica
        self._binder = binder
        self._path = path
        self._active = True
        self._writes: set[asyncio.Task[None]] = set()
        self.update()
        self._off_change = binder.listen(path, self._on_change)
        self._off_teardown = binder.on_teardown(self.unbind)

    @property
    def path(self) -> str:
        return self._path

    @property
    def active(self) -> bool:
        return self._active

    def update(self) -> None:
        """Copy the replica's content into the bound location."""
        self._binder.write(self._path, self._replica.snapshot())

    def unbind(self) -> None:
        if not self._active:
            return
        self._active = False
        self._off_change()
        self._off_teardown()
        self._replica._release_binding(self)
        logger.debug("Unbound %s from %s", self._replica.id, self._path)

    def _on_change(self, value: Any) -> None:
        if not self._active:
            return
        if not isinstance(value, Mapping):
            value = {VALUE_FIELD: value}
        try:
            new_data = to_json(value)
        except ReplicaError as exc:
            logger.warning("Not saving %s: %s", self._path, exc)
            return
        if new_data == to_json(self._replica.record):
            return
        task = asyncio.get_running_loop().create_task(self._write(new_data))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _write(self, data: dict[str, Any]) -> None:
        try:
            await self._replica.store.write(data)
        except ReplicaError as exc:
            logger.warning("Write from %s failed: %s", self._path, exc)
        except Exception:
            logger.exception("Write from %s raised", self._path)
