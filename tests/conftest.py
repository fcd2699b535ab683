"""Shared fixtures for replicant tests."""

from __future__ import annotations

import pytest

from replicant import Replicator

from tests.helpers import ManualClock, Recorder, RecordingStore


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore("items")


@pytest.fixture
def replicator(store: RecordingStore, clock: ManualClock) -> Replicator:
    return Replicator(store, clock=clock, timer=clock.call_later)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
