"""
SQLite Record Store - single-file durable backend

One table per collection with a ``key`` primary key and a JSON ``doc``
column. Predicates and sorting run in Python over the loaded documents, the
same bounded scan the in-memory backend uses. Every ``Transaction.save()``
commits as one SQLite transaction.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

from .record_store import BaseRecordStore, RecordStoreError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def _table(collection: str) -> str:
    if not _IDENTIFIER.fullmatch(collection):
        raise RecordStoreError(f"Invalid collection name: {collection!r}")
    return f'"{collection}"'


class SqliteRecordStore(BaseRecordStore):
    def __init__(self, db_path: str = ":memory:") -> None:
        super().__init__()
        if db_path != ":memory:":
            directory = os.path.dirname(os.path.abspath(db_path))
            os.makedirs(directory, exist_ok=True)
        self.db_path = db_path
        try:
            # Access is serialized by the store lock.
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise RecordStoreError(f"Failed to open {db_path}: {exc}") from exc
        self._known: set[str] = set()
        logger.info(f"SQLite record store loaded: {os.path.basename(db_path) or db_path}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _ensure_table(self, collection: str) -> str:
        table = _table(collection)
        if collection not in self._known:
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {table} (key TEXT PRIMARY KEY, doc TEXT NOT NULL)"
            )
            self._known.add(collection)
        return table

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        try:
            with self._conn:
                yield
        except sqlite3.Error as exc:
            raise RecordStoreError(f"SQLite transaction failed: {exc}") from exc

    def _scan(self, collection: str) -> Iterable[Dict[str, Any]]:
        try:
            table = self._ensure_table(collection)
            rows = self._conn.execute(f"SELECT doc FROM {table}").fetchall()
        except sqlite3.Error as exc:
            raise RecordStoreError(f"Failed to scan {collection}: {exc}") from exc
        return [json.loads(row[0]) for row in rows]

    def _read(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        try:
            table = self._ensure_table(collection)
            row = self._conn.execute(f"SELECT doc FROM {table} WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise RecordStoreError(f"Failed to read {collection}/{key}: {exc}") from exc
        return json.loads(row[0]) if row else None

    def _write(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        try:
            table = self._ensure_table(collection)
            self._conn.execute(
                f"INSERT OR REPLACE INTO {table} (key, doc) VALUES (?, ?)",
                (key, json.dumps(doc)),
            )
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise RecordStoreError(f"Failed to write {collection}/{key}: {exc}") from exc

    def _remove(self, collection: str, key: str) -> None:
        try:
            table = self._ensure_table(collection)
            self._conn.execute(f"DELETE FROM {table} WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise RecordStoreError(f"Failed to delete {collection}/{key}: {exc}") from exc

    def _collections(self) -> List[str]:
        rows = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ).fetchall()
        return [row[0] for row in rows]


__all__ = ["SqliteRecordStore"]
