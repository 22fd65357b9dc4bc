"""
Runtime Configuration - tunables for the memory core and session recorder

Values default to the behavior of the companion app (Miller's-law working
capacity of 7, 5 minute working-memory lifetime, 0.7 importance threshold)
and can be overridden through ``CELINY_*`` environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .record_store import InMemoryRecordStore, RecordStore
from .sqlite_store import SqliteRecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DB_PATH = os.path.join("data", "celiny.db")


def _env(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using {default!r}")
        return default


@dataclass(slots=True)
class MemoryConfig:
    """Capacity, decay and promotion thresholds for the tiered memory."""

    working_capacity: int = 7  # Miller's Law: 7±2
    working_ttl_seconds: float = 300.0  # unrecalled working memories expire after 5 minutes
    importance_threshold: float = 0.7
    semantic_access_threshold: int = 3  # consolidation: access_count > 3 (with high importance)
    episodic_access_threshold: int = 1  # consolidation: access_count > 1
    stats_limit: int = 1000

    @classmethod
    def from_env(cls) -> MemoryConfig:
        defaults = cls()
        return cls(
            working_capacity=_env("CELINY_WORKING_CAPACITY", defaults.working_capacity, int),
            working_ttl_seconds=_env("CELINY_WORKING_TTL_SECONDS", defaults.working_ttl_seconds, float),
            importance_threshold=_env("CELINY_IMPORTANCE_THRESHOLD", defaults.importance_threshold, float),
            semantic_access_threshold=defaults.semantic_access_threshold,
            episodic_access_threshold=defaults.episodic_access_threshold,
            stats_limit=_env("CELINY_STATS_LIMIT", defaults.stats_limit, int),
        )


@dataclass(slots=True)
class SessionConfig:
    flush_every: int = 10  # persist buffered signals early every N signals
    history_average_window: int = 100

    @classmethod
    def from_env(cls) -> SessionConfig:
        defaults = cls()
        return cls(
            flush_every=_env("CELINY_SIGNAL_FLUSH_EVERY", defaults.flush_every, int),
            history_average_window=defaults.history_average_window,
        )


@dataclass(slots=True)
class StoreConfig:
    backend: str = "memory"  # memory|sqlite
    path: str = DEFAULT_DB_PATH

    @classmethod
    def from_env(cls) -> StoreConfig:
        return cls(
            backend=_env("CELINY_STORE_BACKEND", "memory", str).lower(),
            path=_env("CELINY_DB_PATH", DEFAULT_DB_PATH, str),
        )


def open_record_store(config: Optional[StoreConfig] = None) -> RecordStore:
    """Build the configured record store backend."""

    cfg = config or StoreConfig.from_env()
    if cfg.backend == "sqlite":
        return SqliteRecordStore(cfg.path)
    if cfg.backend != "memory":
        logger.warning(f"Unknown store backend {cfg.backend!r}; falling back to in-memory")
    return InMemoryRecordStore()


__all__ = [
    "DEFAULT_DB_PATH",
    "MemoryConfig",
    "SessionConfig",
    "StoreConfig",
    "open_record_store",
]
