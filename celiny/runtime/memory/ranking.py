"""
Retrieval Ranking - candidate selection and ordering for recall queries

WHAT: Pluggable rankers turning a recall query into an ordered memory list
WHERE: celiny/runtime/memory/ranking.py - retrieval layer under MemoryManager
WHO: MemoryManager.retrieve
TIME: O(n log n) over the candidate set

Two rankers:
- LexicalRanker (default): substring match, case/diacritic-insensitive,
  ordered by importance desc then last access desc
- EmbeddingRanker: cosine similarity over ``Memory.embedding`` given an
  ``embed(text)`` callable; only active when injected

Boundary Notes:
- The ranker selects and orders; reinforcement (access_count bump) is the
  manager's job so every ranker gets the same recall semantics
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol, Sequence

import numpy as np

from .models import Memory
from .record_store import Contains, Predicate, fold_text

logger = logging.getLogger(__name__)


class RetrievalRanker(Protocol):
    def candidate_filter(self, query: str) -> Optional[Predicate]:
        """Store-side prefilter for candidates, or None for a full scan."""

    def rank(self, query: str, candidates: Sequence[Memory], limit: int) -> List[Memory]:
        """Order candidates best-first and cap at ``limit``."""


def importance_recency_key(memory: Memory) -> tuple:
    return (-memory.importance, -memory.last_accessed_unix)


def _cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors."""
    if vec1 is None or vec2 is None or len(vec1) == 0 or len(vec2) == 0:
        return 0.0
    v1 = np.asarray(vec1, dtype=float)
    v2 = np.asarray(vec2, dtype=float)
    if v1.shape != v2.shape:
        return 0.0
    norm = np.linalg.norm(v1) * np.linalg.norm(v2)
    return float(np.dot(v1, v2) / norm) if norm > 0 else 0.0


class LexicalRanker:
    """Substring match with an importance/recency tie-break."""

    def candidate_filter(self, query: str) -> Optional[Predicate]:
        return Contains("content", query)

    def rank(self, query: str, candidates: Sequence[Memory], limit: int) -> List[Memory]:
        if not fold_text(query).strip() or limit <= 0:
            return []
        return sorted(candidates, key=importance_recency_key)[:limit]


class EmbeddingRanker:
    """Cosine-similarity ranker over stored embeddings."""

    def __init__(self, embed: Callable[[str], Sequence[float]], *, min_similarity: float = 0.0) -> None:
        self._embed = embed
        self.min_similarity = min_similarity

    def candidate_filter(self, query: str) -> Optional[Predicate]:
        return None

    def rank(self, query: str, candidates: Sequence[Memory], limit: int) -> List[Memory]:
        if not fold_text(query).strip() or limit <= 0:
            return []
        try:
            query_emb = self._embed(query)
        except Exception as e:
            logger.warning(f"Failed to embed recall query: {e}")
            return []

        scored = []
        for memory in candidates:
            if memory.embedding is None:
                continue
            similarity = _cosine_similarity(memory.embedding, query_emb)
            if similarity >= self.min_similarity:
                scored.append((similarity, memory))

        scored.sort(key=lambda pair: (-pair[0],) + importance_recency_key(pair[1]))
        return [memory for _, memory in scored[:limit]]


__all__ = [
    "EmbeddingRanker",
    "LexicalRanker",
    "RetrievalRanker",
    "importance_recency_key",
]
