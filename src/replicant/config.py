"""TOML-based configuration for replica factories.

Provides ``load_config`` / ``discover_config`` for loading ``replicant.toml``
and the frozen dataclasses naming the batching parameters and the classes
used to build ordered replicas, scalar replicas and their records.

Example ``replicant.toml``::

    [batch]
    wait = 0.05
    max_wait = 0.5

    [factories]
    ordered = "myapp.replicas:TodoList"
    record = "myapp.replicas:TodoFactory"
"""

from __future__ import annotations

import importlib
import tomllib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from replicant.ordered import OrderedReplica
from replicant.records import (
    ContentMerger,
    DefaultMerger,
    DefaultRecordFactory,
    RecordFactory,
)
from replicant.scalar import ScalarReplica

__all__ = [
    "BatchConfig",
    "CONFIG_FILENAME",
    "ReplicantConfig",
    "discover_config",
    "load_config",
    "resolve_object",
]

CONFIG_FILENAME = "replicant.toml"


@dataclass(frozen=True)
class BatchConfig:
    """Coalescing parameters for remote events.

    Parameters
    ----------
    wait : float
        Seconds of quiet before a batch of events is applied.
    max_wait : float | None
        Longest delay (seconds) for the first event of a batch. ``None``
        means ``10 * wait``.

    Examples
    --------
    >>> BatchConfig(wait=0.1)
    BatchConfig(wait=0.1, max_wait=None)
    """

    wait: float = 0.05
    max_wait: float | None = None


@dataclass(frozen=True)
class ReplicantConfig:
    """Which classes a ``Replicator`` instantiates, and how it batches.

    Parameters
    ----------
    batch : BatchConfig
        Event coalescing settings.
    ordered_factory : Callable[..., OrderedReplica]
        Called as ``factory(store, destroy_fn, record_factory=..., merger=...)``
        for ordered replicas.
    scalar_factory : Callable[..., ScalarReplica]
        Same, for scalar replicas.
    record_factory : RecordFactory
        Builds records for added children.
    merger : ContentMerger
        Applies changed values onto records.

    Examples
    --------
    >>> config = ReplicantConfig(batch=BatchConfig(wait=0.01))
    >>> config.ordered_factory
    <class 'replicant.ordered.OrderedReplica'>
    """

    batch: BatchConfig = field(default_factory=BatchConfig)
    ordered_factory: Callable[..., OrderedReplica] = OrderedReplica
    scalar_factory: Callable[..., ScalarReplica] = ScalarReplica
    record_factory: RecordFactory = field(default_factory=DefaultRecordFactory)
    merger: ContentMerger = field(default_factory=DefaultMerger)


def resolve_object(target: str) -> Any:
    """Import ``"package.module:attr"`` and return the attribute.

    Examples
    --------
    >>> resolve_object("replicant.ordered:OrderedReplica")
    <class 'replicant.ordered.OrderedReplica'>
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not attr:
        msg = f"Expected 'module:attribute', got {target!r}"
        raise ValueError(msg)
    module = importlib.import_module(module_name)
    obj: Any = module
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj


def discover_config(start: Path | None = None) -> Path | None:
    """Walk up from *start* (default: cwd) looking for ``replicant.toml``."""
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(path: Path | None = None) -> ReplicantConfig:
    """Load a ``ReplicantConfig`` from a TOML file.

    If *path* is ``None``, auto-discovers ``replicant.toml`` by walking up
    from the current working directory. Returns the default config if no
    file is found.

    Raises
    ------
    FileNotFoundError
        If an explicit *path* is given but does not exist.
    """
    if path is None:
        discovered = discover_config()
        if discovered is None:
            return ReplicantConfig()
        path = discovered

    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open("rb") as f:
        raw = tomllib.load(f)

    batch = BatchConfig(**raw.get("batch", {}))

    factories_raw = raw.get("factories", {})
    defaults = ReplicantConfig()
    ordered = defaults.ordered_factory
    scalar = defaults.scalar_factory
    record_factory = defaults.record_factory
    merger = defaults.merger
    if "ordered" in factories_raw:
        ordered = resolve_object(factories_raw["ordered"])
    if "scalar" in factories_raw:
        scalar = resolve_object(factories_raw["scalar"])
    if "record" in factories_raw:
        record_factory = resolve_object(factories_raw["record"])()
    if "merger" in factories_raw:
        merger = resolve_object(factories_raw["merger"])()

    return ReplicantConfig(
        batch=batch,
        ordered_factory=ordered,
        scalar_factory=scalar,
        record_factory=record_factory,
        merger=merger,
    )
