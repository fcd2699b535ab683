"""Replicant - live local replicas of remote collections and records.

Replicant keeps an in-memory copy of a remote location up to date from the
store's event stream:
- ``OrderedReplica`` mirrors an ordered collection of keyed records
- ``ScalarReplica`` mirrors a single record and can be bound two-way to an
  external variable
- bursts of remote events are coalesced before they are applied

Basic usage:
    from replicant import MemoryStore, Replicator

    async def main():
        replicator = Replicator(MemoryStore("todos"))
        todos = replicator.as_ordered()
        await todos.loaded()

        unwatch = todos.watch(lambda event: print(event.event, event.key))
        key = await todos.add({"title": "milk"})
        ...
        todos.destroy()
"""

from replicant.binding import Binding, Scope, ViewBinder
from replicant.config import (
    BatchConfig,
    ReplicantConfig,
    discover_config,
    load_config,
)
from replicant.errors import (
    AlreadyBound,
    Destroyed,
    InvalidReference,
    RemoteFailure,
    ReplicaError,
    ValidationFailure,
)
from replicant.events import (
    ChildAdded,
    ChildChanged,
    ChildMoved,
    ChildRemoved,
    RemoteEvent,
    SnapshotComplete,
    StoreError,
    ValueChanged,
    WatchEvent,
)
from replicant.ordered import OrderedReplica
from replicant.records import (
    ContentMerger,
    DefaultMerger,
    DefaultRecordFactory,
    Record,
    RecordFactory,
    to_json,
)
from replicant.replica import Replica
from replicant.scalar import ScalarReplica
from replicant.scheduler import CoalescingScheduler
from replicant.session import ReplicaSession, Replicator
from replicant.store import MemoryStore, RemoteStore, Subscription

__all__ = [
    # Replicas
    "Replica",
    "OrderedReplica",
    "ScalarReplica",
    "Record",
    # Sessions
    "Replicator",
    "ReplicaSession",
    "CoalescingScheduler",
    # Strategies
    "RecordFactory",
    "ContentMerger",
    "DefaultRecordFactory",
    "DefaultMerger",
    "to_json",
    # Binding
    "Binding",
    "Scope",
    "ViewBinder",
    # Store
    "RemoteStore",
    "MemoryStore",
    "Subscription",
    # Events
    "RemoteEvent",
    "ChildAdded",
    "ChildRemoved",
    "ChildMoved",
    "ChildChanged",
    "ValueChanged",
    "SnapshotComplete",
    "StoreError",
    "WatchEvent",
    # Errors
    "ReplicaError",
    "Destroyed",
    "InvalidReference",
    "AlreadyBound",
    "RemoteFailure",
    "ValidationFailure",
    # Config
    "BatchConfig",
    "ReplicantConfig",
    "load_config",
    "discover_config",
]
