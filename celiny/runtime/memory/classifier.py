"""Initial tier placement for newly stored memories."""

from __future__ import annotations

from .models import MemoryLayer

DEFAULT_IMPORTANCE_THRESHOLD = 0.7


def classify(importance: float, threshold: float = DEFAULT_IMPORTANCE_THRESHOLD) -> MemoryLayer:
    """Map an importance score to the layer a new memory starts in.

    Scores at or above ``threshold`` go straight to semantic; everything else
    starts in working. Episodic is only reachable through consolidation.
    """
    if importance >= threshold:
        return MemoryLayer.SEMANTIC
    return MemoryLayer.WORKING


__all__ = ["DEFAULT_IMPORTANCE_THRESHOLD", "classify"]
