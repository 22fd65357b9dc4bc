"""
Memory Consolidation - promotion rules for the working tier

WHAT: Decides which working memories are promoted, and to which tier
WHERE: celiny/runtime/memory/consolidation.py - policy layer under MemoryManager
WHO: MemoryManager.consolidate_memories sweeps
TIME: O(1) per memory, the sweep itself is a full working-tier scan

Promotion criteria:
- importance > threshold AND access_count > 3 -> semantic
- otherwise access_count > 1 -> episodic
- otherwise stays in working

Boundary Notes:
- Only working memories are ever considered; promotion is one-way
- No episodic -> semantic path and no demotion back to working
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .config import MemoryConfig
from .models import Memory, MemoryLayer


def promotion_target(memory: Memory, config: Optional[MemoryConfig] = None) -> Optional[MemoryLayer]:
    """Return the layer ``memory`` should move to, or None to leave it."""

    cfg = config or MemoryConfig()
    if memory.memory_layer is not MemoryLayer.WORKING:
        return None
    if memory.importance > cfg.importance_threshold and memory.access_count > cfg.semantic_access_threshold:
        return MemoryLayer.SEMANTIC
    if memory.access_count > cfg.episodic_access_threshold:
        return MemoryLayer.EPISODIC
    return None


@dataclass(slots=True)
class ConsolidationReport:
    """Outcome of one consolidation sweep."""

    scanned: int = 0
    promoted_semantic: List[str] = field(default_factory=list)
    promoted_episodic: List[str] = field(default_factory=list)

    @property
    def promoted(self) -> int:
        return len(self.promoted_semantic) + len(self.promoted_episodic)

    def as_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "promoted_semantic": len(self.promoted_semantic),
            "promoted_episodic": len(self.promoted_episodic),
        }


__all__ = ["ConsolidationReport", "promotion_target"]
