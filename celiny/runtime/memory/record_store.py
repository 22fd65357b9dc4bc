"""
Record Store - Durable document storage behind the memory core

WHAT: Record store protocol, query predicates, transactions, in-memory backend
WHERE: celiny/runtime/memory/record_store.py - persistence adapter layer
WHO: MemoryManager, SessionManager and profile helpers
TIME: In-memory operations O(n) per fetch (bounded scan), O(1) per write

Documents are plain dicts keyed by ``_key`` and grouped in named collections.
Queries are a predicate (``Eq``, ``Contains``, ``All``), a list of ``SortKey``
and an optional limit, evaluated over a bounded scan of the collection.

Writes go through an explicit ``Transaction``: operations are staged and only
applied on ``save()``. Conflict rule is property-level last-writer-wins: an
update applies just the properties it names onto the record as it exists at
commit time. Updates and deletes of missing records are skipped, so a delete
always wins over a concurrent update.

Boundary Notes:
- A store instance is the single owning context; inject it, never share it globally
- Backends raise RecordStoreError; managers above catch and degrade gracefully
"""

from __future__ import annotations

import copy
import logging
import threading
import unicodedata
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)


class RecordStoreError(RuntimeError):
    """Raised when a backend cannot read or persist records."""


class RecordNotFoundError(RecordStoreError):
    """Raised when a record required by an operation does not exist."""


class TransactionClosedError(RecordStoreError):
    """Raised when a transaction is used after it was saved or discarded."""


class Collections:
    PROFILES = "user_profiles"
    MEMORIES = "memories"
    SESSIONS = "sessions"
    SIGNALS = "behavior_signals"

    ALL = (PROFILES, MEMORIES, SESSIONS, SIGNALS)


# ------------------------------------------------------------------
# Predicates and sorting
# ------------------------------------------------------------------


def fold_text(text: str) -> str:
    """Case- and diacritic-insensitive normal form ("Olá" -> "ola")."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class Predicate(Protocol):
    def matches(self, doc: Dict[str, Any]) -> bool:
        ...


@dataclass(frozen=True, slots=True)
class Eq:
    field: str
    value: Any

    def matches(self, doc: Dict[str, Any]) -> bool:
        return doc.get(self.field) == _plain(self.value)


@dataclass(frozen=True, slots=True)
class Contains:
    """Substring match with case and diacritic folding on both sides."""

    field: str
    text: str

    def matches(self, doc: Dict[str, Any]) -> bool:
        value = doc.get(self.field)
        needle = fold_text(self.text)
        if value is None or not needle.strip():
            return False
        return needle in fold_text(str(value))


class All:
    """Conjunction of predicates; ``None`` members are ignored."""

    __slots__ = ("predicates",)

    def __init__(self, *predicates: Optional[Predicate]) -> None:
        self.predicates: Tuple[Predicate, ...] = tuple(p for p in predicates if p is not None)

    def matches(self, doc: Dict[str, Any]) -> bool:
        return all(p.matches(doc) for p in self.predicates)

    def __repr__(self) -> str:
        return f"All{self.predicates!r}"


@dataclass(frozen=True, slots=True)
class SortKey:
    field: str
    ascending: bool = True


def sort_records(docs: List[Dict[str, Any]], sort: Sequence[SortKey]) -> List[Dict[str, Any]]:
    """Stable multi-key sort; ``None`` values order before everything else."""
    ordered = list(docs)
    for key in reversed(list(sort)):
        ordered.sort(
            key=lambda d, f=key.field: (d.get(f) is not None, d.get(f)),
            reverse=not key.ascending,
        )
    return ordered


def apply_query(
    docs: Iterable[Dict[str, Any]],
    predicate: Optional[Predicate] = None,
    sort: Sequence[SortKey] = (),
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    matched = [d for d in docs if predicate is None or predicate.matches(d)]
    if sort:
        matched = sort_records(matched, sort)
    if limit is not None:
        matched = matched[: max(0, limit)]
    return matched


# ------------------------------------------------------------------
# Transactions
# ------------------------------------------------------------------


@dataclass(slots=True)
class StagedOperation:
    kind: str  # create|update|delete
    collection: str
    key: str
    payload: Dict[str, Any] = field(default_factory=dict)


class Transaction:
    """Staged unit of work applied atomically by ``save()``."""

    def __init__(self, store: "BaseRecordStore") -> None:
        self._store = store
        self._ops: List[StagedOperation] = []
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._ops)

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise TransactionClosedError("Transaction already saved or discarded")

    def create(self, collection: str, doc: Dict[str, Any]) -> str:
        self._ensure_open()
        key = doc.get("_key")
        if not key:
            raise ValueError("Documents must carry a non-empty '_key'")
        self._ops.append(StagedOperation("create", collection, key, copy.deepcopy(doc)))
        return key

    def update(self, collection: str, key: str, changes: Dict[str, Any]) -> None:
        self._ensure_open()
        if "_key" in changes and changes["_key"] != key:
            raise ValueError("Record keys are immutable")
        self._ops.append(StagedOperation("update", collection, key, copy.deepcopy(changes)))

    def delete(self, collection: str, key: str) -> None:
        self._ensure_open()
        self._ops.append(StagedOperation("delete", collection, key))

    def save(self) -> int:
        """Apply staged operations; returns the number applied."""
        self._ensure_open()
        ops, self._ops = self._ops, []
        self._closed = True
        if not ops:
            return 0
        return self._store._apply(ops)

    def discard(self) -> None:
        self._ops = []
        self._closed = True

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> bool:
        if exc is not None:
            self.discard()
        elif not self._closed:
            self.save()
        return False


# ------------------------------------------------------------------
# Store protocol and shared implementation
# ------------------------------------------------------------------


class RecordStore(Protocol):
    """Abstract interface for the durable record store."""

    def fetch(
        self,
        collection: str,
        predicate: Optional[Predicate] = None,
        sort: Sequence[SortKey] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return matching documents, sorted and capped."""

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        """Return one document by key, or None."""

    def transaction(self) -> Transaction:
        """Open a staged unit of work."""

    def batch_delete(self, collection: str, predicate: Optional[Predicate] = None) -> int:
        """Delete every matching document; returns the count."""

    def wipe(self) -> None:
        """Delete every document in every collection."""


class BaseRecordStore:
    """Shared query/transaction logic; backends supply the primitives."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    # primitives -------------------------------------------------------
    def _scan(self, collection: str) -> Iterable[Dict[str, Any]]:
        raise NotImplementedError

    def _read(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _write(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _remove(self, collection: str, key: str) -> None:
        raise NotImplementedError

    def _collections(self) -> List[str]:
        raise NotImplementedError

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        yield

    # queries ----------------------------------------------------------
    def fetch(
        self,
        collection: str,
        predicate: Optional[Predicate] = None,
        sort: Sequence[SortKey] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            return apply_query(self._scan(collection), predicate, sort, limit)

    def count(self, collection: str, predicate: Optional[Predicate] = None) -> int:
        return len(self.fetch(collection, predicate))

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read(collection, key)

    # writes -----------------------------------------------------------
    def transaction(self) -> Transaction:
        return Transaction(self)

    def create(self, collection: str, doc: Dict[str, Any]) -> str:
        with self.transaction() as tx:
            key = tx.create(collection, doc)
        return key

    def update(self, collection: str, key: str, changes: Dict[str, Any]) -> None:
        with self._lock:
            if self._read(collection, key) is None:
                raise RecordNotFoundError(f"{collection}/{key} not found")
            with self.transaction() as tx:
                tx.update(collection, key, changes)

    def delete(self, collection: str, key: str) -> None:
        with self.transaction() as tx:
            tx.delete(collection, key)

    def batch_delete(self, collection: str, predicate: Optional[Predicate] = None) -> int:
        with self._lock:
            keys = [d["_key"] for d in apply_query(self._scan(collection), predicate)]
            if not keys:
                return 0
            tx = self.transaction()
            for key in keys:
                tx.delete(collection, key)
            return tx.save()

    def wipe(self) -> None:
        with self._lock:
            for collection in self._collections():
                deleted = self.batch_delete(collection)
                logger.info(f"Deleted all data from {collection} ({deleted} records)")

    def _apply(self, ops: Sequence[StagedOperation]) -> int:
        applied = 0
        undo: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []
        with self._lock, self._atomic():
            try:
                for op in ops:
                    current = self._read(op.collection, op.key)
                    if op.kind == "create":
                        if current is not None:
                            raise RecordStoreError(f"{op.collection}/{op.key} already exists")
                        undo.append((op.collection, op.key, None))
                        self._write(op.collection, op.key, copy.deepcopy(op.payload))
                    elif op.kind == "update":
                        if current is None:
                            logger.warning(f"Skipping update of missing record {op.collection}/{op.key}")
                            continue
                        undo.append((op.collection, op.key, copy.deepcopy(current)))
                        current.update(copy.deepcopy(op.payload))
                        self._write(op.collection, op.key, current)
                    elif op.kind == "delete":
                        if current is None:
                            logger.debug(f"Skipping delete of missing record {op.collection}/{op.key}")
                            continue
                        undo.append((op.collection, op.key, current))
                        self._remove(op.collection, op.key)
                    else:
                        raise RecordStoreError(f"Unknown operation kind: {op.kind}")
                    applied += 1
            except Exception:
                for collection, key, prior in reversed(undo):
                    if prior is None:
                        self._remove(collection, key)
                    else:
                        self._write(collection, key, prior)
                raise
        return applied


class InMemoryRecordStore(BaseRecordStore):
    """Process-local backend; documents are deep-copied in and out."""

    def __init__(self) -> None:
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _scan(self, collection: str) -> Iterable[Dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._data.get(collection, {}).values()]

    def _read(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        doc = self._data.get(collection, {}).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    def _write(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        self._data.setdefault(collection, {})[key] = copy.deepcopy(doc)

    def _remove(self, collection: str, key: str) -> None:
        self._data.get(collection, {}).pop(key, None)

    def _collections(self) -> List[str]:
        return list(self._data)


__all__ = [
    "All",
    "BaseRecordStore",
    "Collections",
    "Contains",
    "Eq",
    "InMemoryRecordStore",
    "Predicate",
    "RecordNotFoundError",
    "RecordStore",
    "RecordStoreError",
    "SortKey",
    "StagedOperation",
    "Transaction",
    "TransactionClosedError",
    "apply_query",
    "fold_text",
    "sort_records",
]
