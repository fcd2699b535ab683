"""Exception hierarchy raised by replicas, sessions and stores."""

from __future__ import annotations

from typing import Any


class ReplicaError(Exception):
    """Base class for every error raised by ``replicant``."""


class Destroyed(ReplicaError):
    """An operation was attempted on a replica after ``destroy()``.

    Examples
    --------
    >>> Destroyed("save", "OrderedReplica")
    Destroyed('Cannot call save on a destroyed OrderedReplica')
    """

    def __init__(self, method: str, owner: str = "replica") -> None:
        super().__init__(f"Cannot call {method} on a destroyed {owner}")
        self.method = method


class InvalidReference(ReplicaError):
    """An index or record argument does not resolve to a live member."""

    def __init__(self, ref: Any) -> None:
        super().__init__(f"Invalid record; could not determine its key: {ref!r}")
        self.ref = ref


class AlreadyBound(ReplicaError):
    """A second binding was requested while one is still active."""

    def __init__(self) -> None:
        super().__init__("Can only bind to one location at a time")


class RemoteFailure(ReplicaError):
    """Wraps an error reported by the remote store.

    Parameters
    ----------
    cause : Any
        Store specific error payload (exception, code string, ...).
    """

    def __init__(self, cause: Any) -> None:
        super().__init__(f"Remote store failure: {cause}")
        self.cause = cause


class ValidationFailure(ReplicaError):
    """Content about to be written is not representable in the store."""
