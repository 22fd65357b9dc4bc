import threading
from datetime import datetime, timedelta, timezone

from celiny.runtime.memory.config import MemoryConfig
from celiny.runtime.memory.events import MemoryEventKind
from celiny.runtime.memory.memory_manager import MemoryManager
from celiny.runtime.memory.models import Memory, MemoryLayer
from celiny.runtime.memory.record_store import Collections, InMemoryRecordStore, RecordStoreError
from celiny.runtime.memory.telemetry import RecordingTelemetryClient, TelemetryClient


class ManualClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FailingStore(InMemoryRecordStore):
    def fetch(self, collection, predicate=None, sort=(), limit=None):  # type: ignore[override]
        raise RecordStoreError("disk unavailable")

    def transaction(self):  # type: ignore[override]
        raise RecordStoreError("disk unavailable")


class BrokenSinkTelemetryClient(TelemetryClient):
    def emit_span(self, name: str, attributes: dict) -> None:
        raise ConnectionError("collector offline")


def make_manager(**kwargs):
    clock = kwargs.pop("clock", None) or ManualClock()
    store = kwargs.pop("store", None) or InMemoryRecordStore()
    return MemoryManager(store, clock=clock, **kwargs), store, clock


def test_store_classifies_by_importance():
    manager, _, _ = make_manager()
    manager.store("low", importance=0.2)
    manager.store("edge", importance=0.7)
    manager.store("high", importance=0.95)

    working = [m.content for m in manager.retrieve_by_layer(MemoryLayer.WORKING)]
    semantic = [m.content for m in manager.retrieve_by_layer(MemoryLayer.SEMANTIC)]
    assert working == ["low"]
    assert sorted(semantic) == ["edge", "high"]
    assert manager.retrieve_by_layer(MemoryLayer.EPISODIC) == []


def test_store_hello_example():
    manager, _, _ = make_manager()
    outcome = manager.store("hello", importance=0.9, tags=["x"])

    assert outcome.ok
    semantic = manager.retrieve_by_layer(MemoryLayer.SEMANTIC, limit=10)
    assert [m.content for m in semantic] == ["hello"]
    assert semantic[0].tags == ["x"]
    assert semantic[0].access_count == 0
    assert semantic[0].user_id == manager.profile.key


def test_store_rejects_invalid_input_without_raising():
    manager, store, _ = make_manager()
    assert not manager.store("", importance=0.5)
    assert not manager.store("too important", importance=1.5)
    assert store.fetch(Collections.MEMORIES) == []


def test_retrieve_orders_by_importance_then_recency_and_caps():
    manager, _, clock = make_manager()
    for content, importance in [("note a", 0.3), ("note b", 0.6), ("note c", 0.5), ("note d", 0.9)]:
        manager.store(content, importance=importance)
        clock.advance(1)

    results = manager.retrieve("note", limit=3)
    assert [m.content for m in results] == ["note d", "note b", "note c"]
    assert manager.retrieve("note", limit=0) == []


def test_retrieve_breaks_importance_ties_by_last_access():
    manager, _, clock = make_manager()
    manager.store("tie one", importance=0.4)
    clock.advance(1)
    manager.store("tie two", importance=0.4)
    clock.advance(1)
    manager.retrieve("tie one")
    clock.advance(1)

    results = manager.retrieve("tie", limit=2)
    assert [m.content for m in results] == ["tie one", "tie two"]


def test_retrieve_is_case_and_diacritic_insensitive():
    manager, _, _ = make_manager()
    manager.store("Usuário disse: Olá, tudo bem?", importance=0.5)
    assert len(manager.retrieve("ola")) == 1
    assert len(manager.retrieve("USUARIO")) == 1
    assert manager.retrieve("   ") == []


def test_retrieve_increments_access_count_once_per_call():
    manager, store, clock = make_manager()
    manager.store("remember the milk", importance=0.5)

    for expected in range(1, 4):
        clock.advance(5)
        results = manager.retrieve("milk")
        assert len(results) == 1
        assert results[0].access_count == expected
        assert results[0].last_accessed == clock.now

    doc = store.fetch(Collections.MEMORIES)[0]
    assert doc["access_count"] == 3
    assert doc["last_accessed_unix"] == clock.now.timestamp()


def test_capacity_keeps_most_recent_working_memories():
    manager, _, clock = make_manager()
    for i in range(10):
        manager.store(f"m{i}", importance=0.1)
        clock.advance(1)

    working = manager.retrieve_by_layer(MemoryLayer.WORKING, limit=10)
    assert len(working) == 7
    assert {m.content for m in working} == {f"m{i}" for i in range(3, 10)}
    assert [m.content for m in manager.working_memories] == [f"m{i}" for i in range(9, 2, -1)]


def test_capacity_evicts_lowest_importance_first():
    manager, _, clock = make_manager()
    for i in range(7):
        manager.store(f"keep{i}", importance=0.5)
        clock.advance(1)
    manager.store("weak", importance=0.05)

    contents = {m.content for m in manager.retrieve_by_layer(MemoryLayer.WORKING, limit=10)}
    assert "weak" not in contents
    assert len(contents) == 7


def test_stale_unrecalled_working_memory_expires():
    manager, _, clock = make_manager()
    manager.store("alpha", importance=0.3)
    manager.store("beta", importance=0.3)
    manager.retrieve("alpha")

    clock.advance(301)
    manager.store("gamma", importance=0.3)

    contents = {m.content for m in manager.retrieve_by_layer(MemoryLayer.WORKING)}
    assert contents == {"alpha", "gamma"}


def test_semantic_memories_are_never_cleaned_up():
    manager, _, clock = make_manager()
    manager.store("core fact", importance=0.8)
    clock.advance(3600)
    for i in range(9):
        manager.store(f"filler {i}", importance=0.1)

    assert [m.content for m in manager.retrieve_by_layer(MemoryLayer.SEMANTIC)] == ["core fact"]


def test_consolidation_promotes_by_access_history():
    manager, store, _ = make_manager()
    manager.store("seen twice", importance=0.3)
    manager.store("seen once", importance=0.3)
    manager.retrieve("seen twice")
    manager.retrieve("seen twice")
    manager.retrieve("seen once")

    heavy = Memory(
        content="reinforced fact",
        importance=0.9,
        access_count=4,
        memory_layer=MemoryLayer.WORKING,
        user_id=manager.profile.key,
    )
    store.create(Collections.MEMORIES, heavy.to_record())

    outcome = manager.consolidate_memories()

    assert outcome.ok
    assert outcome.data == {"scanned": 3, "promoted_semantic": 1, "promoted_episodic": 1}
    assert [m.content for m in manager.retrieve_by_layer(MemoryLayer.EPISODIC)] == ["seen twice"]
    assert [m.content for m in manager.retrieve_by_layer(MemoryLayer.SEMANTIC)] == ["reinforced fact"]
    assert [m.content for m in manager.retrieve_by_layer(MemoryLayer.WORKING)] == ["seen once"]


def test_consolidation_leaves_no_promotable_working_memory():
    manager, store, _ = make_manager()
    for i in range(5):
        record = Memory(
            content=f"candidate {i}",
            importance=0.75 + i * 0.04,
            access_count=i + 2,
            memory_layer=MemoryLayer.WORKING,
            user_id=manager.profile.key,
        ).to_record()
        store.create(Collections.MEMORIES, record)

    manager.consolidate_memories()

    for memory in manager.retrieve_by_layer(MemoryLayer.WORKING, limit=100):
        assert not (memory.importance > 0.7 and memory.access_count > 3)


def test_stats_total_matches_layers():
    manager, _, _ = make_manager()
    manager.store("w1", importance=0.1)
    manager.store("w2", importance=0.1)
    manager.store("s1", importance=0.9)
    manager.retrieve("w1")
    manager.retrieve("w1")
    manager.consolidate_memories()

    stats = manager.get_memory_stats()
    assert (stats.working_count, stats.episodic_count, stats.semantic_count) == (1, 1, 1)
    assert stats.total == stats.working_count + stats.episodic_count + stats.semantic_count


def test_stats_respect_configured_cap():
    manager, _, _ = make_manager(config=MemoryConfig(stats_limit=2))
    for i in range(4):
        manager.store(f"fact {i}", importance=0.9)
    assert manager.get_memory_stats().semantic_count == 2


def test_persistence_failures_degrade_gracefully():
    manager, _, _ = make_manager(store=FailingStore())

    outcome = manager.store("lost thought", importance=0.5)
    assert not outcome.ok
    assert outcome.error and "disk unavailable" in outcome.error
    assert manager.retrieve("lost") == []
    assert manager.retrieve_by_layer(MemoryLayer.WORKING) == []
    assert not manager.consolidate_memories()
    assert manager.get_memory_stats().total == 0


def test_listeners_receive_events_and_failures_are_isolated():
    manager, _, clock = make_manager()
    events = []

    def broken(_event):
        raise RuntimeError("observer bug")

    manager.add_listener(broken)
    manager.add_listener(events.append)
    for i in range(8):
        manager.store(f"item {i}", importance=0.2)
        clock.advance(1)
    manager.retrieve("item 7")

    kinds = [e.kind for e in events]
    assert kinds.count(MemoryEventKind.STORED) == 8
    assert kinds.count(MemoryEventKind.EVICTED) == 1
    assert kinds[-1] == MemoryEventKind.ACCESSED
    evicted = next(e for e in events if e.kind == MemoryEventKind.EVICTED)
    assert evicted.detail == {"reason": "capacity"}

    manager.remove_listener(events.append)
    manager.store("unobserved", importance=0.2)
    assert len(events) == len(kinds)


def test_operations_emit_telemetry_spans():
    telemetry = RecordingTelemetryClient()
    manager, _, _ = make_manager(telemetry=telemetry)
    manager.store("probe", importance=0.4)
    manager.retrieve("probe")
    manager.consolidate_memories()

    assert telemetry.names() == ["memory.cleanup", "memory.store", "memory.retrieve", "memory.consolidate"]
    assert all(attrs["success"] is True for _, attrs in telemetry.spans)
    assert dict(telemetry.spans)["memory.retrieve"]["result_count"] == 1


def test_broken_telemetry_sink_does_not_fail_operations():
    manager, _, _ = make_manager(telemetry=BrokenSinkTelemetryClient())
    assert manager.store("still saved", importance=0.4).ok
    assert [m.content for m in manager.retrieve("saved")] == ["still saved"]


def test_profile_is_reused_across_managers():
    store = InMemoryRecordStore()
    first = MemoryManager(store)
    second = MemoryManager(store)
    assert first.profile.key == second.profile.key
    assert len(store.fetch(Collections.PROFILES)) == 1


def test_concurrent_producers_are_serialized():
    manager, _, _ = make_manager()

    def produce(worker: int) -> None:
        for i in range(20):
            manager.store(f"worker {worker} fact {i}", importance=0.9)
            manager.store(f"worker {worker} chatter {i}", importance=0.1)

    threads = [threading.Thread(target=produce, args=(w,)) for w in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stats = manager.get_memory_stats()
    assert stats.semantic_count == 120
    assert stats.working_count == 7


class OutageStore(InMemoryRecordStore):
    def __init__(self, *, writes_fail: bool = True) -> None:
        super().__init__()
        self.down = True
        self.writes_fail = writes_fail

    def fetch(self, collection, predicate=None, sort=(), limit=None):  # type: ignore[override]
        if self.down:
            raise RecordStoreError("store offline")
        return super().fetch(collection, predicate, sort=sort, limit=limit)

    def transaction(self):  # type: ignore[override]
        if self.down and self.writes_fail:
            raise RecordStoreError("store offline")
        return super().transaction()


def test_failed_spans_record_error_type():
    telemetry = RecordingTelemetryClient()
    manager, _, _ = make_manager(store=FailingStore(), telemetry=telemetry)
    manager.store("lost thought", importance=0.5)
    manager.retrieve("lost")
    manager.consolidate_memories()

    spans = dict(telemetry.spans)
    for name in ("memory.store", "memory.retrieve", "memory.consolidate"):
        assert spans[name]["success"] is False
        assert spans[name]["error_type"] == "RecordStoreError"


def test_profile_recovers_after_store_outage():
    store = OutageStore()
    manager = MemoryManager(store)
    store.down = False

    assert manager.store("remember me", importance=0.5).ok

    reopened = MemoryManager(store)
    assert reopened.profile.key == manager.profile.key
    assert store.count(Collections.PROFILES) == 1
    assert [m.content for m in reopened.retrieve("remember")] == ["remember me"]


def test_fallback_profile_is_persisted_with_first_memory():
    store = OutageStore(writes_fail=False)
    manager = MemoryManager(store)
    fallback_key = manager.profile.key

    assert manager.store("written during read outage", importance=0.9).ok
    store.down = False

    reopened = MemoryManager(store)
    assert reopened.profile.key == fallback_key
    assert [m.content for m in reopened.retrieve("read outage")] == ["written during read outage"]


def test_query_of_only_combining_marks_matches_nothing():
    manager, _, _ = make_manager()
    for content in ("first fact", "second fact", "third fact"):
        manager.store(content, importance=0.9)

    assert manager.retrieve("\u0301\u0308") == []
    assert all(m.access_count == 0 for m in manager.retrieve_by_layer(MemoryLayer.SEMANTIC))
