"""
Memory Manager - Tiered memory for the companion (working → episodic → semantic)

WHAT: Store, recall, consolidate and evict memories across three layers
WHERE: celiny/runtime/memory/memory_manager.py - core of the memory subsystem
WHO: Companion coordinator and conversation logic
TIME: Store/recall O(n) over the owning profile's memories (bounded scan)

Layers:
- working: new memories below the importance threshold; capacity 7, and
  unrecalled entries expire after 5 minutes
- episodic: working memories recalled more than once, promoted by consolidation
- semantic: importance >= threshold at creation, or important and recalled
  more than 3 times at consolidation

Operations:
- store(content, importance, tags): classify, persist, then clean up working tier
- retrieve(similar_to, limit): ranked recall; every hit is reinforced
  (access_count + 1, last_accessed = now)
- retrieve_by_layer(layer, limit): newest first
- consolidate_memories(): one-shot promotion sweep over the working tier
- get_memory_stats(): per-layer counts

Boundary Notes:
- All public methods are single-writer: they run inside the shared SerialContext
- Persistence failures are logged and reported as OperationOutcome, never raised
- Deletions (expiry, capacity eviction) are permanent; there is no demotion
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .classifier import classify
from .config import MemoryConfig
from .consolidation import ConsolidationReport, promotion_target
from .events import MemoryEvent, MemoryEventKind, MemoryListener, OperationOutcome
from .models import Memory, MemoryLayer, MemoryStats, UserProfile, ensure_utc, utc_now
from .profiles import load_or_create_profile
from .ranking import LexicalRanker, RetrievalRanker
from .record_store import All, Collections, Eq, RecordStore, SortKey
from .serial import SerialContext, serialized
from .telemetry import NoOpTelemetryClient, TelemetryClient

logger = logging.getLogger(__name__)


class MemoryManager:
    """Three-layer memory store with capacity, decay and promotion policy."""

    def __init__(
        self,
        store: RecordStore,
        *,
        config: MemoryConfig | None = None,
        ranker: RetrievalRanker | None = None,
        clock: Callable[[], datetime] | None = None,
        telemetry: TelemetryClient | None = None,
        serial: SerialContext | None = None,
        profile: UserProfile | None = None,
    ) -> None:
        self.records = store
        self.config = config or MemoryConfig()
        self._ranker = ranker or LexicalRanker()
        self._clock = clock or utc_now
        self._telemetry = telemetry or NoOpTelemetryClient()
        self._serial = serial or SerialContext()
        self._listeners: List[MemoryListener] = []
        self._working: Tuple[Memory, ...] = ()
        self._profile_persisted = profile is not None
        self.profile = profile or self._bootstrap_profile()
        self._refresh_working()
        logger.info(f"Memory manager initialized for profile {self.profile.key}")

    # ---------------------- properties ----------------------
    @property
    def serial(self) -> SerialContext:
        return self._serial

    @property
    def working_memories(self) -> Tuple[Memory, ...]:
        """Snapshot of the working tier, newest first, at most capacity entries."""
        return self._working

    # ---------------------- listeners ----------------------
    def add_listener(self, listener: MemoryListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MemoryListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, kind: str, memory: Memory, **detail) -> None:
        event = MemoryEvent(kind=kind, memory_key=memory.key, layer=memory.memory_layer, detail=detail)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Memory listener failed on {kind} event: {e}")

    # ---------------------- store ----------------------
    @serialized
    def store(
        self,
        content: str,
        importance: float = 0.5,
        tags: Iterable[str] = (),
        *,
        session_id: Optional[str] = None,
        embedding: Optional[Sequence[float]] = None,
    ) -> OperationOutcome:
        """Create a memory, place it in its initial layer and persist it.

        Working-tier cleanup runs after every successful store, so other
        working memories may be evicted as a side effect.
        """
        profile_persisted = self._ensure_profile()
        now = self._now()
        try:
            memory = Memory(
                content=content,
                importance=importance,
                tags=list(tags),
                embedding=list(embedding) if embedding is not None else None,
                created_at=now,
                last_accessed=now,
                access_count=0,
                memory_layer=classify(importance, self.config.importance_threshold),
                user_id=self.profile.key,
                session_id=session_id,
            )
        except (ValidationError, TypeError) as e:
            logger.warning(f"Rejected memory: {e}")
            return OperationOutcome.failure("memory.store", "invalid memory", error=e)

        with self._telemetry.span(
            "memory.store",
            attributes={"layer": memory.memory_layer.value, "tag_count": len(memory.tags)},
        ) as span:
            try:
                with self.records.transaction() as tx:
                    if not profile_persisted:
                        tx.create(Collections.PROFILES, self.profile.to_record())
                    tx.create(Collections.MEMORIES, memory.to_record())
            except Exception as e:
                logger.error(f"Memory store error: {e}")
                span.set_attribute("success", False)
                span.set_attribute("error_type", type(e).__name__)
                return OperationOutcome.failure("memory.store", "persistence failed", error=e)
            if not profile_persisted:
                self._profile_persisted = True
                logger.info(f"Persisted fallback profile {self.profile.key}")

            if memory.memory_layer is MemoryLayer.SEMANTIC:
                logger.info(f"Semantic memory stored: {memory.content[:50]}")
            else:
                logger.info(f"Working memory stored: {memory.content[:50]}")
            self._notify(MemoryEventKind.STORED, memory)

            evicted = self._cleanup_working_memory()
            span.set_attribute("evicted", len(evicted))

        return OperationOutcome.success(
            "memory.store",
            record_id=memory.key,
            layer=memory.memory_layer.value,
            evicted=[m.key for m in evicted],
        )

    # ---------------------- retrieve ----------------------
    @serialized
    def retrieve(self, similar_to: str, limit: int = 5) -> List[Memory]:
        """Return ranked memories related to ``similar_to``.

        Recall reinforces retention: each returned memory gets exactly one
        access_count increment and a fresh last_accessed per call.
        """
        if limit <= 0:
            return []
        self._ensure_profile()

        with self._telemetry.span("memory.retrieve", attributes={"limit": limit}) as span:
            try:
                predicate = All(
                    Eq("user_id", self.profile.key),
                    self._ranker.candidate_filter(similar_to),
                )
                candidates = [Memory.from_record(doc) for doc in self.records.fetch(Collections.MEMORIES, predicate)]
                results = self._ranker.rank(similar_to, candidates, limit)
                if results:
                    now = self._now()
                    with self.records.transaction() as tx:
                        for memory in results:
                            memory.access_count += 1
                            memory.last_accessed = now
                            tx.update(
                                Collections.MEMORIES,
                                memory.key,
                                {
                                    "access_count": memory.access_count,
                                    "last_accessed": now.isoformat(),
                                    "last_accessed_unix": now.timestamp(),
                                },
                            )
            except Exception as e:
                logger.error(f"Memory retrieval error: {e}")
                span.set_attribute("success", False)
                span.set_attribute("error_type", type(e).__name__)
                return []
            span.set_attribute("candidate_count", len(candidates))
            span.set_attribute("result_count", len(results))

        for memory in results:
            self._notify(MemoryEventKind.ACCESSED, memory, access_count=memory.access_count)
        return results

    @serialized
    def retrieve_by_layer(self, layer: MemoryLayer, limit: int = 10) -> List[Memory]:
        """Memories of exactly ``layer``, newest first."""
        if limit <= 0:
            return []
        try:
            return self._load_layer(MemoryLayer(layer), limit=limit)
        except Exception as e:
            logger.error(f"Failed to load {layer} memories: {e}")
            return []

    # ---------------------- consolidation ----------------------
    @serialized
    def consolidate_memories(self) -> OperationOutcome:
        """Promote working memories according to their importance and recall history."""

        report = ConsolidationReport()
        with self._telemetry.span("memory.consolidate") as span:
            try:
                working = self._load_layer(MemoryLayer.WORKING)
                report.scanned = len(working)
                promotions = [(m, promotion_target(m, self.config)) for m in working]
                promotions = [(m, target) for m, target in promotions if target is not None]
                if promotions:
                    with self.records.transaction() as tx:
                        for memory, target in promotions:
                            tx.update(Collections.MEMORIES, memory.key, {"memory_layer": target.value})
            except Exception as e:
                logger.error(f"Memory consolidation error: {e}")
                span.set_attribute("success", False)
                span.set_attribute("error_type", type(e).__name__)
                return OperationOutcome.failure("memory.consolidate", "consolidation failed", error=e)

            for memory, target in promotions:
                memory.memory_layer = target
                if target is MemoryLayer.SEMANTIC:
                    report.promoted_semantic.append(memory.key)
                    logger.info(f"Memory promoted to semantic: {memory.content[:50]}")
                else:
                    report.promoted_episodic.append(memory.key)
                    logger.debug(f"Memory promoted to episodic: {memory.content[:50]}")
                self._notify(MemoryEventKind.PROMOTED, memory, source=MemoryLayer.WORKING.value)
            for key, value in report.as_dict().items():
                span.set_attribute(key, value)

        self._refresh_working()
        return OperationOutcome.success("memory.consolidate", **report.as_dict())

    # ---------------------- statistics ----------------------
    @serialized
    def get_memory_stats(self) -> MemoryStats:
        cap = self.config.stats_limit
        try:
            counts = {
                layer: len(self._load_layer(layer, limit=cap))
                for layer in (MemoryLayer.WORKING, MemoryLayer.EPISODIC, MemoryLayer.SEMANTIC)
            }
        except Exception as e:
            logger.error(f"Failed to compute memory stats: {e}")
            return MemoryStats(working_count=0, episodic_count=0, semantic_count=0)
        return MemoryStats(
            working_count=counts[MemoryLayer.WORKING],
            episodic_count=counts[MemoryLayer.EPISODIC],
            semantic_count=counts[MemoryLayer.SEMANTIC],
        )

    # ---------------------- internals ----------------------
    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    def _bootstrap_profile(self) -> UserProfile:
        try:
            profile = load_or_create_profile(self.records, clock=self._clock)
        except Exception as e:
            # Transient until _ensure_profile or the first stored memory persists it.
            logger.error(f"Failed to load user profile, using a transient one: {e}")
            return UserProfile(created_at=self._now())
        self._profile_persisted = True
        return profile

    def _ensure_profile(self) -> bool:
        """Adopt the persisted profile once the store is reachable again.

        Returns False while the active profile exists only in memory.
        """
        if self._profile_persisted:
            return True
        try:
            profile = load_or_create_profile(self.records, clock=self._clock)
        except Exception as e:
            logger.warning(f"User profile still unavailable: {e}")
            return False
        if profile.key != self.profile.key:
            logger.info(f"Switching from transient profile to {profile.key}")
        self.profile = profile
        self._profile_persisted = True
        self._refresh_working()
        return True

    def _load_layer(self, layer: MemoryLayer, limit: Optional[int] = None) -> List[Memory]:
        rows = self.records.fetch(
            Collections.MEMORIES,
            All(Eq("user_id", self.profile.key), Eq("memory_layer", layer)),
            sort=[SortKey("created_at_unix", ascending=False)],
            limit=limit,
        )
        return [Memory.from_record(doc) for doc in rows]

    def _refresh_working(self) -> None:
        try:
            self._working = tuple(self._load_layer(MemoryLayer.WORKING, limit=self.config.working_capacity))
        except Exception as e:
            logger.error(f"Failed to load working memories: {e}")

    def _cleanup_working_memory(self) -> List[Memory]:
        """Expire stale unrecalled working memories, then enforce capacity.

        Phase 1 deletes entries older than the working TTL that were never
        recalled. Phase 2 deletes the lowest (importance, access_count,
        created_at) entries until the working tier fits its capacity.
        """
        with self._telemetry.span("memory.cleanup") as span:
            try:
                working = self._load_layer(MemoryLayer.WORKING)
                cutoff = self._now() - timedelta(seconds=self.config.working_ttl_seconds)
                expired = [m for m in working if m.created_at < cutoff and m.access_count == 0]
                expired_keys = {m.key for m in expired}
                remaining = [m for m in working if m.key not in expired_keys]

                overflow: List[Memory] = []
                excess = len(remaining) - self.config.working_capacity
                if excess > 0:
                    ranked = sorted(remaining, key=lambda m: (m.importance, m.access_count, m.created_at_unix))
                    overflow = ranked[:excess]

                if expired or overflow:
                    with self.records.transaction() as tx:
                        for memory in expired + overflow:
                            tx.delete(Collections.MEMORIES, memory.key)
            except Exception as e:
                logger.error(f"Working memory cleanup error: {e}")
                span.set_attribute("success", False)
                span.set_attribute("error_type", type(e).__name__)
                return []

            span.set_attribute("scanned", len(working))
            span.set_attribute("expired", len(expired))
            span.set_attribute("overflow", len(overflow))

        for memory in expired:
            logger.debug(f"Deleted old working memory: {memory.content[:30]}")
            self._notify(MemoryEventKind.EVICTED, memory, reason="expired")
        for memory in overflow:
            logger.debug(f"Evicted working memory over capacity: {memory.content[:30]}")
            self._notify(MemoryEventKind.EVICTED, memory, reason="capacity")

        self._refresh_working()
        return expired + overflow


__all__ = ["MemoryManager"]
