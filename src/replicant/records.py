"""Records, the strategies that build and merge them, and the export format.

A remote value becomes a ``Record``: its mapping content lives in
``fields`` while the store-assigned ``id`` and ``priority`` stay outside of it.
Primitive remote values are wrapped under the reserved ``$value`` field.

``to_json`` is the inverse direction: it turns a record (or a plain mapping
that mirrors one, such as a bound location) into the payload written back to
the store, using the ``.value`` / ``.priority`` export keys.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from replicant.errors import ValidationFailure

__all__ = [
    "ContentMerger",
    "DefaultMerger",
    "DefaultRecordFactory",
    "ID_FIELD",
    "PRIORITY_FIELD",
    "PRIORITY_KEY",
    "Record",
    "RecordFactory",
    "VALUE_FIELD",
    "VALUE_KEY",
    "normalize",
    "public_items",
    "to_json",
    "validate",
]

VALUE_FIELD = "$value"
ID_FIELD = "$id"
PRIORITY_FIELD = "$priority"

VALUE_KEY = ".value"
PRIORITY_KEY = ".priority"

_INVALID_KEY = re.compile(r"[.$\[\]#/]")
_EXPORT_KEYS = frozenset({VALUE_KEY, PRIORITY_KEY})


@dataclass(eq=False)
class Record:
    """A uniquely keyed value tracked by a replica.

    Records compare by identity: two records holding the same content are
    still different members of a replica.

    Parameters
    ----------
    id : str
        Key assigned by the remote store.
    fields : dict[str, Any]
        User visible content.
    priority : Any
        Store priority, display only.

    Examples
    --------
    >>> rec = Record("a", {"x": 1})
    >>> rec["x"]
    1
    >>> Record("b", {"$value": 3}).value
    3
    """

    id: str
    fields: dict[str, Any] = field(default_factory=dict)
    priority: Any = None

    @property
    def value(self) -> Any:
        """Primitive content of a scalar wrapper, ``None`` otherwise."""
        return self.fields.get(VALUE_FIELD)

    @property
    def is_primitive(self) -> bool:
        return VALUE_FIELD in self.fields

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.fields[name] = value

    def __delitem__(self, name: str) -> None:
        del self.fields[name]

    def __contains__(self, name: object) -> bool:
        return name in self.fields

    def __iter__(self) -> Iterator[str]:
        return iter(self.fields)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


def normalize(value: Any) -> dict[str, Any]:
    """Turn a remote value into a field mapping.

    ``None`` (no data) becomes an empty mapping and any non-mapping value is
    wrapped under ``$value``.

    Examples
    --------
    >>> normalize({"x": 1})
    {'x': 1}
    >>> normalize(5)
    {'$value': 5}
    >>> normalize(None)
    {}
    """
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    return {VALUE_FIELD: value}


class RecordFactory(Protocol):
    """Builds the record inserted by an ``added`` event."""

    def create(self, key: str, value: Any, priority: Any) -> Record: ...


class ContentMerger(Protocol):
    """Applies a ``changed`` payload to an existing record in place.

    Returns whether anything observable (fields, values or priority)
    changed.
    """

    def merge(self, record: Record, value: Any, priority: Any) -> bool: ...


class DefaultRecordFactory:
    def create(self, key: str, value: Any, priority: Any) -> Record:
        return Record(id=key, fields=normalize(value), priority=priority)


class DefaultMerger:
    def merge(self, record: Record, value: Any, priority: Any) -> bool:
        incoming = normalize(value)
        previous = dict(record.fields)
        previous_priority = record.priority

        for name in list(record.fields):
            if name not in incoming:
                del record.fields[name]
        record.fields.update(incoming)
        record.priority = priority

        return previous != record.fields or previous_priority != priority


def public_items(data: Mapping[str, Any]) -> Iterator[tuple[str, Any]]:
    """Yield the entries that are not reserved (``$`` or ``_`` prefixed)."""
    for key, value in data.items():
        if isinstance(key, str) and key[:1] in ("$", "_"):
            continue
        yield key, value


def to_json(rec: Any) -> dict[str, Any]:
    """Serialize a record or a record-shaped mapping into a store payload.

    Objects exposing their own ``to_json()`` method are serialized with it.
    Reserved fields are stripped, the scalar wrapper becomes ``.value`` and a
    non-empty payload carries ``.priority`` when one is set.

    Raises
    ------
    ValidationFailure
        If a key contains ``. $ [ ] # /`` or a value is not JSON compatible.

    Examples
    --------
    >>> to_json(Record("a", {"x": 1}, priority=2))
    {'x': 1, '.priority': 2}
    >>> to_json({"$value": "hi", "$id": "a", "$priority": None})
    {'.value': 'hi'}
    """
    custom = getattr(rec, "to_json", None)
    if callable(custom):
        data = dict(custom())
    elif isinstance(rec, Record):
        data = _payload(rec.fields, rec.priority)
    elif isinstance(rec, Mapping):
        data = _payload(rec, rec.get(PRIORITY_FIELD))
    else:
        msg = f"Cannot serialize {type(rec).__name__}; expected a record or a mapping"
        raise ValidationFailure(msg)
    validate(data)
    return data


def _payload(fields: Mapping[str, Any], priority: Any) -> dict[str, Any]:
    if VALUE_FIELD in fields:
        data = {VALUE_KEY: fields[VALUE_FIELD]}
    else:
        data = dict(public_items(fields))
    if priority is not None and data:
        data[PRIORITY_KEY] = priority
    return data


def validate(data: Any, *, top: bool = True) -> None:
    """Check that *data* can be written to the store.

    Examples
    --------
    >>> validate({"a.b": 1})
    Traceback (most recent call last):
    ...
    replicant.errors.ValidationFailure: Invalid key a.b (cannot contain .$[]#/)
    """
    match data:
        case None | bool() | int() | float() | str():
            return
        case Mapping():
            for key, value in data.items():
                if not isinstance(key, str):
                    msg = f"Invalid key {key!r}; keys must be strings"
                    raise ValidationFailure(msg)
                if _INVALID_KEY.search(key) and not (top and key in _EXPORT_KEYS):
                    msg = f"Invalid key {key} (cannot contain .$[]#/)"
                    raise ValidationFailure(msg)
                validate(value, top=False)
        case list() | tuple():
            for item in data:
                validate(item, top=False)
        case _:
            msg = f"Value {data!r} of type {type(data).__name__} cannot be stored"
            raise ValidationFailure(msg)
