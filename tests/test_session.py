from __future__ import annotations

from typing import Any

import pytest

from replicant import (
    BatchConfig,
    OrderedReplica,
    RemoteFailure,
    ReplicantConfig,
    ReplicaSession,
    Replicator,
    ValidationFailure,
)
from replicant.scheduler import CoalescingScheduler

from tests.helpers import ManualClock, Recorder, RecordingStore


def keys(replica: OrderedReplica) -> list[str]:
    return [rec.id for rec in replica]


async def seeded(store: RecordingStore, value: Any) -> None:
    await store.write(value)
    store.writes.clear()


class TestReplicator:
    async def test_reuses_live_replica(self, replicator: Replicator) -> None:
        assert replicator.as_ordered() is replicator.as_ordered()
        assert replicator.as_scalar() is replicator.as_scalar()
        assert replicator.as_ordered() is not replicator.as_scalar()

    async def test_new_replica_after_destroy(self, replicator: Replicator) -> None:
        first = replicator.as_ordered()
        first.destroy()
        second = replicator.as_ordered()
        assert second is not first
        assert not second.destroyed

    async def test_rejects_non_callable_factory(self, store: RecordingStore) -> None:
        with pytest.raises(TypeError):
            Replicator(store, ReplicantConfig(ordered_factory="nope"))  # type: ignore[arg-type]

    async def test_custom_factory(
        self, store: RecordingStore, clock: ManualClock
    ) -> None:
        class TodoList(OrderedReplica):
            def titles(self) -> list[str]:
                return [rec["title"] for rec in self]

        await seeded(store, {"a": {"title": "milk"}})
        config = ReplicantConfig(ordered_factory=TodoList)
        todos = Replicator(store, config, clock=clock, timer=clock.call_later).as_ordered()
        clock.advance(1.0)

        assert isinstance(todos, TodoList)
        assert todos.titles() == ["milk"]

    async def test_direct_writes(self, replicator: Replicator, store: RecordingStore) -> None:
        key = await replicator.push({"x": 1})
        await replicator.set({"x": 2}, "b")
        await replicator.update({"y": 3}, "b")
        assert store.child(key) == {"x": 1}
        assert store.child("b") == {"x": 2, "y": 3}

        await replicator.remove("b")
        assert store.child("b") is None

    async def test_direct_writes_validate(self, replicator: Replicator) -> None:
        with pytest.raises(ValidationFailure):
            await replicator.push({"a/b": 1})
        with pytest.raises(ValidationFailure):
            await replicator.set({"x": object()})


class TestOrderedSession:
    async def test_snapshot_loads_after_flush(
        self, replicator: Replicator, store: RecordingStore, clock: ManualClock
    ) -> None:
        await seeded(store, {"a": {"x": 1, ".priority": 1}, "b": {"x": 2, ".priority": 2}})
        todos = replicator.as_ordered()
        assert not todos.is_loaded
        assert len(todos) == 0

        clock.advance(1.0)
        assert await todos.loaded() is todos
        assert keys(todos) == ["a", "b"]

    async def test_add_arrives_through_events(
        self, replicator: Replicator, clock: ManualClock, recorder: Recorder
    ) -> None:
        todos = replicator.as_ordered()
        clock.advance(1.0)
        todos.watch(recorder)

        first = await todos.add({"title": "milk"})
        second = await todos.add({"title": "eggs"})
        assert len(todos) == 0

        clock.advance(1.0)
        assert keys(todos) == [first, second]
        assert recorder.events[1].prev_id == first

    async def test_priority_change_moves_record(
        self,
        replicator: Replicator,
        store: RecordingStore,
        clock: ManualClock,
        recorder: Recorder,
    ) -> None:
        await seeded(store, {"a": {"x": 1, ".priority": 1}, "b": {"x": 2, ".priority": 2}})
        todos = replicator.as_ordered()
        clock.advance(1.0)
        todos.watch(recorder)

        await replicator.set({"x": 1, ".priority": 3}, "a")
        clock.advance(1.0)
        assert keys(todos) == ["b", "a"]
        assert recorder.kinds == ["updated", "moved"]
        assert todos[1].priority == 3

    async def test_remove_arrives_through_events(
        self, replicator: Replicator, store: RecordingStore, clock: ManualClock
    ) -> None:
        await seeded(store, {"a": {"x": 1}})
        todos = replicator.as_ordered()
        clock.advance(1.0)

        await todos.remove(0)
        assert keys(todos) == ["a"]
        clock.advance(1.0)
        assert keys(todos) == []

    async def test_denied_write_leaves_state(
        self, replicator: Replicator, store: RecordingStore, clock: ManualClock
    ) -> None:
        await seeded(store, {"a": {"x": 1}})
        todos = replicator.as_ordered()
        clock.advance(1.0)
        todos[0]["x"] = 5

        store.deny_writes()
        with pytest.raises(RemoteFailure) as exc_info:
            await todos.save(0)
        assert exc_info.value.cause == "PERMISSION_DENIED"

        clock.advance(1.0)
        assert store.child("a") == {"x": 1}
        assert keys(todos) == ["a"]

    async def test_store_failure_destroys_replica(
        self,
        replicator: Replicator,
        store: RecordingStore,
        clock: ManualClock,
        recorder: Recorder,
    ) -> None:
        todos = replicator.as_ordered()
        clock.advance(1.0)
        todos.watch(recorder)

        store.fail("PERMISSION_DENIED")
        clock.advance(1.0)
        assert recorder.kinds == ["error"]
        assert recorder.events[0].error == "PERMISSION_DENIED"
        assert todos.destroyed
        assert store.subscriber_count == 0

        again = replicator.as_ordered()
        assert again is not todos
        assert store.subscriber_count == 1


class TestSessionLifecycle:
    async def test_destroy_unsubscribes(
        self, replicator: Replicator, store: RecordingStore
    ) -> None:
        todos = replicator.as_ordered()
        profile = replicator.as_scalar()
        assert store.subscriber_count == 2

        todos.destroy()
        profile.destroy()
        assert store.subscriber_count == 0

    async def test_pending_events_dropped_on_destroy(
        self, replicator: Replicator, clock: ManualClock, recorder: Recorder
    ) -> None:
        todos = replicator.as_ordered()
        clock.advance(1.0)
        todos.watch(recorder)

        await todos.add({"x": 1})
        todos.destroy()
        clock.advance(1.0)
        assert recorder.events == []
        assert len(todos) == 0

    async def test_session_destroy_is_idempotent(
        self, store: RecordingStore, clock: ManualClock
    ) -> None:
        scheduler = CoalescingScheduler(0.05, clock=clock, timer=clock.call_later)
        session = ReplicaSession(store, OrderedReplica, "child", scheduler)
        replica = session.replica
        assert replica is not None

        session.destroy()
        session.destroy()
        assert session.is_destroyed
        assert session.replica is None
        assert replica.destroyed
        assert store.subscriber_count == 0

    async def test_batch_config_is_used(self, store: RecordingStore, clock: ManualClock) -> None:
        config = ReplicantConfig(batch=BatchConfig(wait=0.5))
        todos = Replicator(store, config, clock=clock, timer=clock.call_later).as_ordered()

        clock.advance(0.25)
        assert not todos.is_loaded
        clock.advance(0.25)
        assert todos.is_loaded

    async def test_live_replica_required(
        self, store: RecordingStore, clock: ManualClock
    ) -> None:
        scheduler = CoalescingScheduler(0.05, clock=clock, timer=clock.call_later)
        session = ReplicaSession(store, OrderedReplica, "child", scheduler)
        session.destroy()
        with pytest.raises(RuntimeError):
            Replicator._live(session)


class TestTransaction:
    async def test_commits_child(
        self,
        replicator: Replicator,
        store: RecordingStore,
        clock: ManualClock,
        recorder: Recorder,
    ) -> None:
        await seeded(store, {"a": {"n": 1}})
        todos = replicator.as_ordered()
        clock.advance(1.0)
        todos.watch(recorder)

        committed = await replicator.transaction(lambda cur: {"n": cur["n"] + 1}, "a")
        assert committed == {"n": 2}
        assert store.child("a") == {"n": 2}

        clock.advance(1.0)
        assert recorder.kinds == ["updated"]
        assert todos[0]["n"] == 2

    async def test_missing_child_starts_from_none(self, replicator: Replicator) -> None:
        seen: list[object] = []

        def bump(current: object) -> int:
            seen.append(current)
            return 1 if current is None else current + 1  # type: ignore[operator]

        assert await replicator.transaction(bump, "count") == 1
        assert await replicator.transaction(bump, "count") == 2
        assert seen == [None, 1]

    async def test_whole_location(
        self, replicator: Replicator, store: RecordingStore
    ) -> None:
        await seeded(store, {"a": 1})
        committed = await replicator.transaction(lambda cur: {**cur, "b": 2})
        assert committed == {"a": 1, "b": 2}
        assert store.value == {"a": 1, "b": 2}

    async def test_abort_leaves_store_untouched(
        self,
        replicator: Replicator,
        store: RecordingStore,
        clock: ManualClock,
        recorder: Recorder,
    ) -> None:
        await seeded(store, {"a": {"n": 1}})
        todos = replicator.as_ordered()
        clock.advance(1.0)
        todos.watch(recorder)

        assert await replicator.transaction(lambda cur: None, "a") is None
        clock.advance(1.0)
        assert store.child("a") == {"n": 1}
        assert recorder.events == []

    async def test_denied_write(self, replicator: Replicator, store: RecordingStore) -> None:
        calls: list[object] = []
        store.deny_writes()
        with pytest.raises(RemoteFailure):
            await replicator.transaction(lambda cur: calls.append(cur) or 1, "a")
        assert calls == []
        assert store.child("a") is None

    async def test_invalid_result(self, replicator: Replicator, store: RecordingStore) -> None:
        with pytest.raises(ValidationFailure):
            await replicator.transaction(lambda cur: {"a.b": 1}, "a")
        assert store.child("a") is None
