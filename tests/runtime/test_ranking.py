from datetime import datetime, timedelta, timezone

import pytest

from celiny.runtime.memory.classifier import classify
from celiny.runtime.memory.config import MemoryConfig
from celiny.runtime.memory.consolidation import promotion_target
from celiny.runtime.memory.memory_manager import MemoryManager
from celiny.runtime.memory.models import Memory, MemoryLayer
from celiny.runtime.memory.ranking import EmbeddingRanker, LexicalRanker
from celiny.runtime.memory.record_store import InMemoryRecordStore

T0 = datetime(2026, 5, 1, tzinfo=timezone.utc)


def memory(content, importance=0.5, accessed=0, **kwargs):
    return Memory(
        content=content,
        importance=importance,
        last_accessed=T0 + timedelta(seconds=accessed),
        user_id="user_test",
        **kwargs,
    )


@pytest.mark.parametrize(
    "importance, layer",
    [(0.0, MemoryLayer.WORKING), (0.69, MemoryLayer.WORKING), (0.7, MemoryLayer.SEMANTIC), (1.0, MemoryLayer.SEMANTIC)],
)
def test_classify_threshold_is_inclusive(importance, layer):
    assert classify(importance) is layer


def test_classify_respects_custom_threshold():
    assert classify(0.5, threshold=0.4) is MemoryLayer.SEMANTIC


def test_promotion_target_rules():
    cfg = MemoryConfig()
    assert promotion_target(memory("a", importance=0.8, access_count=4), cfg) is MemoryLayer.SEMANTIC
    assert promotion_target(memory("b", importance=0.8, access_count=3), cfg) is MemoryLayer.EPISODIC
    assert promotion_target(memory("c", importance=0.7, access_count=9), cfg) is MemoryLayer.EPISODIC
    assert promotion_target(memory("d", importance=0.2, access_count=1), cfg) is None
    assert promotion_target(memory("e", access_count=9, memory_layer=MemoryLayer.EPISODIC), cfg) is None


def test_lexical_ranker_orders_and_caps():
    ranker = LexicalRanker()
    candidates = [
        memory("low", importance=0.2, accessed=50),
        memory("old high", importance=0.9, accessed=1),
        memory("new high", importance=0.9, accessed=9),
    ]
    ranked = ranker.rank("anything", candidates, limit=2)
    assert [m.content for m in ranked] == ["new high", "old high"]
    assert ranker.rank("", candidates, limit=2) == []
    assert ranker.candidate_filter("abc").matches({"content": "xABCx"})


def test_embedding_ranker_uses_cosine_similarity():
    vectors = {"pets": [1.0, 0.0], "weather": [0.0, 1.0]}
    ranker = EmbeddingRanker(lambda text: vectors[text], min_similarity=0.5)
    candidates = [
        memory("my dog is called Rex", embedding=[0.9, 0.1]),
        memory("it rained today", embedding=[0.1, 0.9]),
        memory("no vector"),
        memory("cat", importance=0.9, embedding=[0.9, 0.1]),
    ]

    ranked = ranker.rank("pets", candidates, limit=5)
    assert [m.content for m in ranked] == ["cat", "my dog is called Rex"]
    assert ranker.candidate_filter("pets") is None


def test_embedding_ranker_survives_embedder_failure():
    def broken(_text):
        raise RuntimeError("model offline")

    ranker = EmbeddingRanker(broken)
    assert ranker.rank("pets", [memory("x", embedding=[1.0])], limit=3) == []


def test_manager_accepts_embedding_ranker():
    ranker = EmbeddingRanker(lambda text: [1.0, 0.0])
    manager = MemoryManager(InMemoryRecordStore(), ranker=ranker)
    manager.store("close", importance=0.4, embedding=[1.0, 0.1])
    manager.store("far", importance=0.4, embedding=[-1.0, 0.0])

    results = manager.retrieve("unrelated words", limit=1)
    assert [m.content for m in results] == ["close"]
    assert results[0].access_count == 1
