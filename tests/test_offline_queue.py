import asyncio
from datetime import date, datetime, timezone

import pytest

from core.errors import PersistenceError, StoreError, ValidationError
from models.pending_op import OperationKind
from services.connectivity import ConnectivityMonitor
from services.document_store import MemoryDocumentStore
from services.offline_queue import OfflineSyncQueue
from storage.journal import MemoryJournal


class RecordingStore(MemoryDocumentStore):
    """Memory store that records every write and can be told to fail."""

    def __init__(self, fail: bool = False, gate: asyncio.Event | None = None):
        super().__init__()
        self.fail = fail
        self.gate = gate
        self.calls: list[tuple[str, str, str]] = []

    async def _record(self, kind, collection, document_id):
        self.calls.append((kind, collection, document_id))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise StoreError("backend unavailable", status=503)

    async def create(self, collection, document_id, data):
        await self._record("create", collection, document_id)
        await super().create(collection, document_id, data)

    async def update(self, collection, document_id, data):
        await self._record("update", collection, document_id)
        await super().update(collection, document_id, data)

    async def delete(self, collection, document_id):
        await self._record("delete", collection, document_id)
        await super().delete(collection, document_id)


class BrokenJournal(MemoryJournal):
    def __init__(self):
        super().__init__()
        self.broken = True

    def set(self, key, value):
        if self.broken:
            raise PersistenceError("disk full")
        super().set(key, value)


def _queue(store=None, journal=None, online=True, **kwargs):
    monitor = ConnectivityMonitor(online=online)
    queue = OfflineSyncQueue(store or RecordingStore(), journal or MemoryJournal(), monitor, **kwargs)
    return queue, monitor


def test_register_while_offline_grows_queue_by_one():
    queue, _ = _queue(online=False)

    for index in range(3):
        op_id = queue.register_pending_operation("update", "menus", f"m{index}", {"name": "Lunes"})
        assert queue.get_pending_operations_count() == index + 1
        pending = {op.id: op for op in queue.get_pending_operations()}
        assert pending[op_id].attempts == 0
        assert pending[op_id].kind is OperationKind.UPDATE


def test_delete_with_payload_is_rejected():
    queue, _ = _queue(online=False)
    queue.register_pending_operation("create", "menus", "m1", {"name": "Lunes"})

    with pytest.raises(ValidationError):
        queue.register_pending_operation("delete", "menus", "m1", {"name": "Lunes"})

    assert queue.get_pending_operations_count() == 1


def test_create_without_payload_is_rejected():
    queue, _ = _queue(online=False)
    with pytest.raises(ValidationError):
        queue.register_pending_operation("create", "menus", "m1")
    with pytest.raises(ValidationError):
        queue.register_pending_operation("update", "menus", "m1", {})
    with pytest.raises(ValueError):
        queue.register_pending_operation("upsert", "menus", "m1", {"a": 1})
    assert queue.get_pending_operations_count() == 0


def test_sync_with_healthy_store_empties_queue():
    store = RecordingStore()
    queue, _ = _queue(store=store)
    for index in range(4):
        queue.register_pending_operation("create", "coordinators", f"c{index}", {"name": f"C{index}"})

    summary = asyncio.run(queue.sync_pending_operations())

    assert (summary.total, summary.successful, summary.pending) == (4, 4, 0)
    assert queue.get_pending_operations_count() == 0
    assert asyncio.run(store.get("coordinators", "c2")) == {"name": "C2"}


def test_operations_replay_in_enqueue_order():
    store = RecordingStore()
    queue, _ = _queue(store=store)
    queue.register_pending_operation("create", "menus", "A", {"v": 1})
    queue.register_pending_operation("update", "menus", "B", {"v": 2})
    queue.register_pending_operation("delete", "menus", "C")

    asyncio.run(queue.sync_pending_operations())

    assert store.calls == [
        ("create", "menus", "A"),
        ("update", "menus", "B"),
        ("delete", "menus", "C"),
    ]


def test_failing_operation_is_dropped_after_max_attempts():
    queue, _ = _queue(store=RecordingStore(fail=True))
    op_id = queue.register_pending_operation("update", "menus", "m1", {"v": 1})

    for attempt in range(1, 5):
        summary = asyncio.run(queue.sync_pending_operations())
        assert summary.failed_permanently == []
        assert queue.get_pending_operations()[0].attempts == attempt
        assert "backend unavailable" in queue.get_pending_operations()[0].last_error

    summary = asyncio.run(queue.sync_pending_operations())
    assert summary.failed_permanently == [op_id]
    assert summary.pending == 0
    assert queue.get_pending_operations_count() == 0

    sixth = asyncio.run(queue.sync_pending_operations())
    assert sixth.total == 0


def test_failures_do_not_abort_the_batch():
    class PickyStore(RecordingStore):
        async def update(self, collection, document_id, data):
            if document_id == "bad":
                raise StoreError("rejected", status=500)
            await super().update(collection, document_id, data)

    store = PickyStore()
    queue, _ = _queue(store=store)
    queue.register_pending_operation("update", "menus", "bad", {"v": 1})
    queue.register_pending_operation("update", "menus", "good", {"v": 2})

    summary = asyncio.run(queue.sync_pending_operations())

    assert (summary.total, summary.successful, summary.pending) == (2, 1, 1)
    assert [op.document_id for op in queue.get_pending_operations()] == ["bad"]


def test_sync_is_noop_while_offline():
    store = RecordingStore()
    queue, _ = _queue(store=store, online=False)
    queue.register_pending_operation("create", "menus", "m1", {"v": 1})

    summary = asyncio.run(queue.sync_pending_operations())

    assert (summary.total, summary.successful, summary.pending) == (0, 0, 1)
    assert store.calls == []


def test_manual_offline_overrides_connectivity():
    queue, monitor = _queue(online=True)
    assert queue.is_offline() is False

    queue.go_offline()
    assert monitor.is_online is True
    assert queue.is_offline() is True

    queue.go_online()
    assert queue.is_offline() is False

    monitor.set_online(False)
    assert queue.is_offline() is True


def test_journal_round_trip_into_fresh_instance():
    journal = MemoryJournal()
    queue, _ = _queue(journal=journal, online=False, origin_id="device-1")
    stamp = datetime(2024, 3, 4, 12, 30, tzinfo=timezone.utc)
    queue.register_pending_operation("create", "attendanceConfirmations", "c1_2024-03-04", {"updatedAt": stamp, "counts": {"monday": 3}})
    queue.register_pending_operation("delete", "menus", "m9")

    fresh, _ = _queue(journal=journal, online=False)
    asyncio.run(fresh.initialize())

    assert [op.to_dict() for op in fresh.get_pending_operations()] == [
        op.to_dict() for op in queue.get_pending_operations()
    ]
    restored = fresh.get_pending_operations()[0]
    assert restored.payload["updatedAt"] == stamp
    assert restored.origin_id == "device-1"


def test_initialize_twice_is_idempotent():
    journal = MemoryJournal()
    seed, _ = _queue(journal=journal, online=False)
    seed.register_pending_operation("update", "menus", "m1", {"v": 1})

    queue, monitor = _queue(journal=journal, online=False)
    asyncio.run(queue.initialize())
    asyncio.run(queue.initialize())

    assert monitor.subscriber_count == 1
    assert queue.get_pending_operations_count() == 1


def test_pending_operations_are_copies():
    queue, _ = _queue(online=False)
    queue.register_pending_operation("update", "menus", "m1", {"dishes": ["sopa"]})

    snapshot = queue.get_pending_operations()
    snapshot[0].attempts = 99
    snapshot[0].payload["dishes"].append("pan")

    original = queue.get_pending_operations()[0]
    assert original.attempts == 0
    assert original.payload == {"dishes": ["sopa"]}


def test_concurrent_sync_calls_share_one_run():
    gate = asyncio.Event()
    store = RecordingStore(gate=gate)
    queue, _ = _queue(store=store)
    queue.register_pending_operation("update", "menus", "m1", {"v": 1})

    async def scenario():
        first = asyncio.ensure_future(queue.sync_pending_operations())
        await asyncio.sleep(0)
        second = asyncio.ensure_future(queue.sync_pending_operations())
        await asyncio.sleep(0)
        gate.set()
        return await first, await second

    first, second = asyncio.run(scenario())

    assert first is second
    assert store.calls == [("update", "menus", "m1")]
    assert first.successful == 1


def test_operations_registered_mid_sync_run_in_follow_up_pass():
    gate = asyncio.Event()
    store = RecordingStore(gate=gate)
    queue, _ = _queue(store=store)
    queue.register_pending_operation("update", "menus", "A", {"v": 1})

    async def scenario():
        run = asyncio.ensure_future(queue.sync_pending_operations())
        await asyncio.sleep(0)
        queue.register_pending_operation("update", "menus", "B", {"v": 2})
        gate.set()
        summary = await run
        await queue.drain()
        return summary

    summary = asyncio.run(scenario())

    assert [call[2] for call in store.calls] == ["A", "B"]
    assert summary.total == 2
    assert queue.get_pending_operations_count() == 0


def test_going_offline_mid_sync_stops_the_pass():
    queue = None

    class DisconnectingStore(RecordingStore):
        async def update(self, collection, document_id, data):
            await super().update(collection, document_id, data)
            queue.monitor.set_online(False)

    store = DisconnectingStore()
    queue, _ = _queue(store=store)
    queue.register_pending_operation("update", "menus", "A", {"v": 1})
    queue.register_pending_operation("update", "menus", "B", {"v": 2})

    summary = asyncio.run(queue.sync_pending_operations())

    assert summary.successful == 1
    remaining = queue.get_pending_operations()
    assert [op.document_id for op in remaining] == ["B"]
    assert remaining[0].attempts == 0


def test_backoff_skips_operations_not_yet_due():
    queue, _ = _queue(store=RecordingStore(fail=True), backoff_enabled=True)
    queue.register_pending_operation("update", "menus", "m1", {"v": 1})

    first = asyncio.run(queue.sync_pending_operations())
    second = asyncio.run(queue.sync_pending_operations())

    assert first.total == 1
    assert (second.total, second.skipped, second.pending) == (0, 1, 1)
    pending = queue.get_pending_operations()[0]
    assert pending.attempts == 1
    assert pending.next_try_at is not None


def test_connectivity_restore_triggers_sync():
    store = RecordingStore()
    queue, monitor = _queue(store=store, online=False)
    queue.register_pending_operation("create", "menus", "m1", {"v": 1})
    summaries = []
    queue.on_sync_complete(summaries.append)

    async def scenario():
        await queue.initialize()
        monitor.set_online(True)
        await queue.drain()

    asyncio.run(scenario())

    assert store.calls == [("create", "menus", "m1")]
    assert queue.get_pending_operations_count() == 0
    assert len(summaries) == 1
    assert summaries[0].successful == 1


def test_connectivity_restore_respects_manual_offline():
    store = RecordingStore()
    queue, monitor = _queue(store=store, online=False)
    queue.register_pending_operation("create", "menus", "m1", {"v": 1})

    async def scenario():
        await queue.initialize()
        queue.go_offline()
        monitor.set_online(True)
        await queue.drain()

    asyncio.run(scenario())

    assert store.calls == []
    assert queue.get_pending_operations_count() == 1


def test_register_while_online_syncs_in_background():
    store = RecordingStore()
    queue, _ = _queue(store=store)

    async def scenario():
        await queue.initialize()
        queue.register_pending_operation("update", "menus", "m1", {"v": 1})
        await queue.drain()

    asyncio.run(scenario())

    assert store.calls == [("update", "menus", "m1")]
    assert queue.get_pending_operations_count() == 0


def test_go_online_triggers_sync():
    store = RecordingStore()
    queue, _ = _queue(store=store)

    async def scenario():
        queue.go_offline()
        queue.register_pending_operation("update", "menus", "m1", {"v": 1})
        task = queue.go_online()
        assert task is not None
        return await task

    summary = asyncio.run(scenario())

    assert summary.successful == 1
    assert store.calls == [("update", "menus", "m1")]


def test_status_callback_tracks_transitions():
    queue, monitor = _queue(online=True)
    seen = []

    unsubscribe = queue.on_status_change(seen.append)
    assert seen[-1].is_online is True and seen[-1].pending_count == 0

    monitor.set_online(False)
    asyncio.run(queue.initialize())
    monitor.set_online(True)
    monitor.set_online(False)
    assert seen[-1].is_online is False

    queue.go_offline()
    assert seen[-1].manual_offline_mode is True

    queue.register_pending_operation("delete", "menus", "m1")
    assert seen[-1].pending_count == 1
    assert seen[-1].persistence_enabled is True

    count = len(seen)
    unsubscribe()
    queue.go_online()
    assert len(seen) == count


def test_failing_listener_does_not_break_others():
    queue, _ = _queue(online=False)
    seen = []

    def boom(_status):
        raise RuntimeError("listener bug")

    queue.on_status_change(boom)
    queue.on_status_change(seen.append)
    queue.register_pending_operation("delete", "menus", "m1")

    assert seen[-1].pending_count == 1


def test_journal_failure_keeps_operation_in_memory():
    journal = BrokenJournal()
    queue, _ = _queue(journal=journal, online=False)

    queue.register_pending_operation("update", "menus", "m1", {"v": 1})

    assert queue.get_pending_operations_count() == 1
    assert queue.status().persistence_enabled is False

    journal.broken = False
    queue.register_pending_operation("update", "menus", "m2", {"v": 2})
    assert queue.status().persistence_enabled is True
    assert '"m1"' in journal.values["pendingOperations"]


def test_corrupt_journal_starts_empty():
    journal = MemoryJournal({"pendingOperations": "{not json"})
    queue, _ = _queue(journal=journal, online=False)

    asyncio.run(queue.initialize())

    assert queue.get_pending_operations_count() == 0
    assert queue.status().persistence_enabled is False


def test_payload_that_cannot_be_journaled_is_rejected():
    journal = MemoryJournal()
    queue, _ = _queue(journal=journal, online=False)
    queue.register_pending_operation("update", "menus", "a", {"n": 1})

    with pytest.raises(ValidationError):
        queue.register_pending_operation("update", "menus", "b", {"handle": object()})
    queue.register_pending_operation("update", "menus", "c", {"n": 3})

    assert queue.status().persistence_enabled is True
    fresh, _ = _queue(journal=journal, online=False)
    asyncio.run(fresh.initialize())
    assert [op.document_id for op in fresh.get_pending_operations()] == ["a", "c"]


def test_dates_and_bytes_survive_a_restart():
    journal = MemoryJournal()
    queue, _ = _queue(journal=journal, online=False)
    queue.register_pending_operation("update", "menus", "a", {"n": 1})
    queue.register_pending_operation("update", "menus", "b", {"week": date(2024, 1, 1), "photo": b"\x89PNG"})
    queue.register_pending_operation("update", "menus", "c", {"n": 3})

    fresh, _ = _queue(journal=journal, online=False)
    asyncio.run(fresh.initialize())

    restored = fresh.get_pending_operations()
    assert [op.document_id for op in restored] == ["a", "b", "c"]
    assert restored[1].payload == {"week": date(2024, 1, 1), "photo": b"\x89PNG"}


def test_delete_with_empty_payload_is_rejected():
    queue, _ = _queue(online=False)
    with pytest.raises(ValidationError):
        queue.register_pending_operation("delete", "menus", "m1", {})
    assert queue.get_pending_operations_count() == 0
