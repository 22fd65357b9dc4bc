"""
Memory Models - Type-safe data structures for the companion memory core

WHAT: Pydantic models for profiles, memories, sessions and behavior signals
WHERE: celiny/runtime/memory/models.py - data layer
WHO: Memory and session managers creating/validating records
TIME: Model validation <1ms

Provides type-safe models matching the record store documents. All persisted
models include:
- Timestamp handling (ISO 8601 + Unix mirrors for sorting)
- A generated ``_key`` identifier
- ``to_record`` / ``from_record`` conversion to plain dict documents

Boundary Notes:
- Every Memory belongs to exactly one UserProfile (``user_id`` is required)
- ``memory_layer`` is a total classification: always exactly one tier
- BehaviorSignal ownership is assigned at session end, not at creation
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class MemoryLayer(str, Enum):
    WORKING = "working"
    EPISODIC = "episodic"
    SEMANTIC = "semantic"


class SessionType(str, Enum):
    CONVERSATION = "conversation"
    TRAINING = "training"
    CALIBRATION = "calibration"
    PASSIVE = "passive"


class SignalType(str, Enum):
    HEAD_POSE = "head_pose"
    EXPRESSION = "expression"
    VOICE_AMPLITUDE = "voice_amplitude"
    ATTENTION = "attention"
    ENGAGEMENT = "engagement"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_key(prefix: str) -> str:
    """Generate a prefixed unique key, e.g. ``mem_3f2a9c1d0b4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _parse_ts(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return ensure_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value is not None else None


class UserProfile(BaseModel):
    """One per installation; created lazily, removed only by a full wipe."""

    key: str = Field(default_factory=lambda: generate_key("user"))
    name: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    preferences: Dict[str, Any] = Field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        return {
            "_key": self.key,
            "name": self.name,
            "created_at": _format_ts(self.created_at),
            "created_at_unix": ensure_utc(self.created_at).timestamp(),
            "preferences": dict(self.preferences),
        }

    @classmethod
    def from_record(cls, doc: Dict[str, Any]) -> UserProfile:
        return cls(
            key=doc["_key"],
            name=doc.get("name"),
            created_at=_parse_ts(doc.get("created_at")) or utc_now(),
            preferences=doc.get("preferences") or {},
        )


class Memory(BaseModel):
    """
    A single remembered fact or utterance.

    Examples:
    - "User said: my sister is called Ana" (importance 0.7, semantic)
    - "I said: good morning!" (importance 0.6, working)

    ``embedding`` is persisted but only participates in retrieval when an
    embedding-aware ranker is injected; the default ranker is lexical.
    """

    key: str = Field(default_factory=lambda: generate_key("mem"))
    content: str = Field(min_length=1)
    embedding: Optional[List[float]] = None
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    access_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    last_accessed: datetime = Field(default_factory=utc_now)
    memory_layer: MemoryLayer = MemoryLayer.WORKING
    tags: List[str] = Field(default_factory=list)
    user_id: str
    session_id: Optional[str] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: List[str]) -> List[str]:
        # Set-like but ordered: keep the first occurrence of each tag.
        seen: Dict[str, None] = {}
        for tag in value:
            seen.setdefault(tag, None)
        return list(seen)

    @field_validator("created_at", "last_accessed")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def created_at_unix(self) -> float:
        return self.created_at.timestamp()

    @property
    def last_accessed_unix(self) -> float:
        return self.last_accessed.timestamp()

    def to_record(self) -> Dict[str, Any]:
        return {
            "_key": self.key,
            "content": self.content,
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "importance": float(self.importance),
            "access_count": int(self.access_count),
            "created_at": _format_ts(self.created_at),
            "created_at_unix": self.created_at_unix,
            "last_accessed": _format_ts(self.last_accessed),
            "last_accessed_unix": self.last_accessed_unix,
            "memory_layer": self.memory_layer.value,
            "tags": list(self.tags),
            "user_id": self.user_id,
            "session_id": self.session_id,
        }

    @classmethod
    def from_record(cls, doc: Dict[str, Any]) -> Memory:
        return cls(
            key=doc["_key"],
            content=doc["content"],
            embedding=doc.get("embedding"),
            importance=doc.get("importance", 0.5),
            access_count=doc.get("access_count", 0),
            created_at=_parse_ts(doc.get("created_at")) or utc_now(),
            last_accessed=_parse_ts(doc.get("last_accessed")) or utc_now(),
            memory_layer=MemoryLayer(doc.get("memory_layer", MemoryLayer.WORKING.value)),
            tags=doc.get("tags") or [],
            user_id=doc["user_id"],
            session_id=doc.get("session_id"),
        )


class Session(BaseModel):
    """One bounded interval of interaction."""

    key: str = Field(default_factory=lambda: generate_key("sess"))
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    session_type: SessionType = SessionType.PASSIVE
    user_id: str
    signal_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def to_record(self) -> Dict[str, Any]:
        return {
            "_key": self.key,
            "started_at": _format_ts(self.started_at),
            "started_at_unix": ensure_utc(self.started_at).timestamp(),
            "ended_at": _format_ts(self.ended_at),
            "duration_seconds": float(self.duration_seconds),
            "session_type": self.session_type.value,
            "user_id": self.user_id,
            "signal_count": int(self.signal_count),
        }

    @classmethod
    def from_record(cls, doc: Dict[str, Any]) -> Session:
        return cls(
            key=doc["_key"],
            started_at=_parse_ts(doc.get("started_at")) or utc_now(),
            ended_at=_parse_ts(doc.get("ended_at")),
            duration_seconds=doc.get("duration_seconds") or 0.0,
            session_type=SessionType(doc.get("session_type", SessionType.PASSIVE.value)),
            user_id=doc["user_id"],
            signal_count=doc.get("signal_count", 0),
        )


class BehaviorSignal(BaseModel):
    """One timestamped scalar measurement; immutable once recorded."""

    key: str = Field(default_factory=lambda: generate_key("sig"))
    timestamp: datetime = Field(default_factory=utc_now)
    signal_type: SignalType
    value: float
    metadata: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "_key": self.key,
            "timestamp": _format_ts(self.timestamp),
            "timestamp_unix": ensure_utc(self.timestamp).timestamp(),
            "signal_type": self.signal_type.value,
            "value": float(self.value),
            "metadata": dict(self.metadata) if self.metadata is not None else None,
            "session_id": self.session_id,
        }

    @classmethod
    def from_record(cls, doc: Dict[str, Any]) -> BehaviorSignal:
        return cls(
            key=doc["_key"],
            timestamp=_parse_ts(doc.get("timestamp")) or utc_now(),
            signal_type=SignalType(doc["signal_type"]),
            value=doc["value"],
            metadata=doc.get("metadata"),
            session_id=doc.get("session_id"),
        )


@dataclass(frozen=True, slots=True)
class MemoryStats:
    working_count: int
    episodic_count: int
    semantic_count: int

    @property
    def total(self) -> int:
        return self.working_count + self.episodic_count + self.semantic_count


@dataclass(frozen=True, slots=True)
class SignalStatistics:
    count: int = 0
    average: float = 0.0
    min: float = 0.0
    max: float = 0.0


__all__ = [
    "BehaviorSignal",
    "Memory",
    "MemoryLayer",
    "MemoryStats",
    "Session",
    "SessionType",
    "SignalStatistics",
    "SignalType",
    "UserProfile",
    "ensure_utc",
    "generate_key",
    "utc_now",
]
