"""Operation outcomes and change notifications emitted by the memory core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .models import MemoryLayer


@dataclass(slots=True)
class OperationOutcome:
    """Best-effort success or recorded failure of a write operation.

    Managers never raise for persistence problems or invalid state
    transitions; they return one of these instead.
    """

    operation: str
    ok: bool
    detail: str = ""
    error: Optional[str] = None
    record_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, operation: str, *, detail: str = "", record_id: Optional[str] = None, **data: Any) -> OperationOutcome:
        return cls(operation=operation, ok=True, detail=detail, record_id=record_id, data=data)

    @classmethod
    def failure(cls, operation: str, detail: str, *, error: Optional[BaseException] = None, **data: Any) -> OperationOutcome:
        return cls(
            operation=operation,
            ok=False,
            detail=detail,
            error=f"{type(error).__name__}: {error}" if error is not None else None,
            data=data,
        )


class MemoryEventKind:
    STORED = "stored"
    ACCESSED = "accessed"
    PROMOTED = "promoted"
    EVICTED = "evicted"


@dataclass(frozen=True, slots=True)
class MemoryEvent:
    kind: str
    memory_key: str
    layer: MemoryLayer
    detail: Dict[str, Any] = field(default_factory=dict)


MemoryListener = Callable[[MemoryEvent], None]


__all__ = [
    "MemoryEvent",
    "MemoryEventKind",
    "MemoryListener",
    "OperationOutcome",
]
