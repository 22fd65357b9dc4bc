"""
Session Manager - Interaction sessions and behavior signal recording

WHAT: Groups behavior telemetry (expression, voice amplitude, ...) into sessions
WHERE: celiny/runtime/memory/session.py - bridges event sources and storage
WHO: Companion coordinator, analytics/statistics consumers
TIME: record_signal O(1) amortized, persistence batched

State machine: idle → active on start_session, active → idle on end_session.
At most one session is active at a time; invalid transitions are logged
no-ops.

Signals are buffered in memory while a session is active and attached to the
session at end_session in one transaction. Every ``flush_every`` signals the
not-yet-persisted ones are written early, unlinked, without clearing the
buffer; end_session then links them to the session.

Boundary Notes:
- duration_seconds is computed once at end and never changes afterwards
- Persistence failures are logged and reported as OperationOutcome
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .config import SessionConfig
from .events import OperationOutcome
from .models import (
    BehaviorSignal,
    Session,
    SessionType,
    SignalStatistics,
    SignalType,
    UserProfile,
    ensure_utc,
    utc_now,
)
from .record_store import Collections, Eq, RecordStore, SortKey
from .serial import SerialContext, serialized
from .telemetry import NoOpTelemetryClient, TelemetryClient

logger = logging.getLogger(__name__)


class SessionManager:
    """Session lifecycle and behavior-signal buffering."""

    def __init__(
        self,
        store: RecordStore,
        *,
        config: SessionConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        telemetry: TelemetryClient | None = None,
        serial: SerialContext | None = None,
    ) -> None:
        self.records = store
        self.config = config or SessionConfig()
        self._clock = clock or utc_now
        self._telemetry = telemetry or NoOpTelemetryClient()
        self._serial = serial or SerialContext()
        self._current: Optional[Session] = None
        self._signals: List[BehaviorSignal] = []
        self._flushed: set[str] = set()
        logger.info("Session manager initialized")

    # ---------------------- state ----------------------
    @property
    def serial(self) -> SerialContext:
        return self._serial

    @property
    def current_session(self) -> Optional[Session]:
        return self._current

    @property
    def is_session_active(self) -> bool:
        return self._current is not None

    @property
    def buffered_signals(self) -> tuple[BehaviorSignal, ...]:
        return tuple(self._signals)

    # ---------------------- lifecycle ----------------------
    @serialized
    def start_session(self, session_type: SessionType, user: UserProfile) -> OperationOutcome:
        if self._current is not None:
            logger.warning("Session already active")
            return OperationOutcome.failure(
                "session.start", "session already active", active_session=self._current.key
            )

        session = Session(
            started_at=self._now(),
            session_type=SessionType(session_type),
            user_id=user.key,
        )
        # The session is live even if the write fails; end_session retries via update-or-create.
        self._current = session
        self._signals = []
        self._flushed = set()
        try:
            with self.records.transaction() as tx:
                tx.create(Collections.SESSIONS, session.to_record())
        except Exception as e:
            logger.error(f"Failed to persist session start: {e}")
            return OperationOutcome.failure("session.start", "persistence failed", error=e, session=session.key)

        logger.info(f"Session started: {session.session_type.value}")
        return OperationOutcome.success("session.start", record_id=session.key)

    @serialized
    def end_session(self) -> OperationOutcome:
        session = self._current
        if session is None:
            logger.warning("No active session to end")
            return OperationOutcome.failure("session.end", "no active session")

        signals = list(self._signals)
        flushed = set(self._flushed)
        ended_at = self._now()
        session.ended_at = ended_at
        session.duration_seconds = max(0.0, (ended_at - ensure_utc(session.started_at)).total_seconds())
        session.signal_count = len(signals)
        for signal in signals:
            signal.session_id = session.key

        self._current = None
        self._signals = []
        self._flushed = set()

        with self._telemetry.span("session.end", attributes={"signal_count": len(signals)}) as span:
            try:
                exists = self.records.get(Collections.SESSIONS, session.key) is not None
                with self.records.transaction() as tx:
                    if exists:
                        tx.update(
                            Collections.SESSIONS,
                            session.key,
                            {
                                "ended_at": ended_at.isoformat(),
                                "duration_seconds": session.duration_seconds,
                                "signal_count": session.signal_count,
                            },
                        )
                    else:
                        tx.create(Collections.SESSIONS, session.to_record())
                    for signal in signals:
                        if signal.key in flushed:
                            tx.update(Collections.SIGNALS, signal.key, {"session_id": session.key})
                        else:
                            tx.create(Collections.SIGNALS, signal.to_record())
            except Exception as e:
                logger.error(f"Failed to persist session end: {e}")
                span.set_attribute("success", False)
                span.set_attribute("error_type", type(e).__name__)
                return OperationOutcome.failure(
                    "session.end", "persistence failed", error=e, duration_seconds=session.duration_seconds
                )
            span.set_attribute("duration_s", session.duration_seconds)

        logger.info(f"Session ended - Duration: {session.duration_seconds:.1f}s, Signals: {len(signals)}")
        return OperationOutcome.success(
            "session.end",
            record_id=session.key,
            duration_seconds=session.duration_seconds,
            signal_count=len(signals),
        )

    # ---------------------- signals ----------------------
    @serialized
    def record_signal(
        self,
        signal_type: SignalType,
        value: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OperationOutcome:
        if self._current is None:
            logger.debug(f"Ignoring {signal_type} signal: no active session")
            return OperationOutcome.failure("session.signal", "no active session")

        try:
            signal = BehaviorSignal(
                timestamp=self._now(),
                signal_type=SignalType(signal_type),
                value=float(value),
                metadata=dict(metadata) if metadata is not None else None,
            )
        except (ValueError, TypeError) as e:
            logger.warning(f"Rejected behavior signal: {e}")
            return OperationOutcome.failure("session.signal", "invalid signal", error=e)
        self._signals.append(signal)

        flush_every = self.config.flush_every
        if flush_every > 0 and len(self._signals) % flush_every == 0:
            self._flush_pending()
        return OperationOutcome.success("session.signal", record_id=signal.key)

    def _flush_pending(self) -> None:
        pending = [s for s in self._signals if s.key not in self._flushed]
        if not pending:
            return
        try:
            with self.records.transaction() as tx:
                for signal in pending:
                    tx.create(Collections.SIGNALS, signal.to_record())
        except Exception as e:
            logger.error(f"Failed to flush behavior signals: {e}")
            return
        self._flushed.update(s.key for s in pending)
        logger.debug(f"Flushed {len(pending)} behavior signals")

    # ---------------------- analytics ----------------------
    @serialized
    def get_session_history(self, limit: int = 10) -> List[Session]:
        if limit <= 0:
            return []
        try:
            rows = self.records.fetch(
                Collections.SESSIONS,
                sort=[SortKey("started_at_unix", ascending=False)],
                limit=limit,
            )
        except Exception as e:
            logger.error(f"Failed to load session history: {e}")
            return []
        return [Session.from_record(doc) for doc in rows]

    @serialized
    def get_total_session_time(self) -> float:
        try:
            rows = self.records.fetch(Collections.SESSIONS)
        except Exception as e:
            logger.error(f"Failed to load sessions: {e}")
            return 0.0
        return float(sum(doc.get("duration_seconds") or 0.0 for doc in rows))

    @serialized
    def get_average_session_duration(self) -> float:
        sessions = self.get_session_history(limit=self.config.history_average_window)
        if not sessions:
            return 0.0
        return sum(s.duration_seconds for s in sessions) / len(sessions)

    @serialized
    def get_signal_statistics(self, signal_type: SignalType) -> SignalStatistics:
        """Count/average/min/max of the active session's buffered signals."""
        if self._current is None:
            return SignalStatistics()
        wanted = SignalType(signal_type)
        values = [s.value for s in self._signals if s.signal_type is wanted]
        if not values:
            return SignalStatistics()
        return SignalStatistics(
            count=len(values),
            average=sum(values) / len(values),
            min=min(values),
            max=max(values),
        )

    # ---------------------- deletion ----------------------
    @serialized
    def delete_session(self, session_key: str) -> OperationOutcome:
        """Delete a finished session, its behavior signals, and unlink its memories."""
        if self._current is not None and self._current.key == session_key:
            logger.warning("Refusing to delete the active session")
            return OperationOutcome.failure("session.delete", "session is active")
        try:
            if self.records.get(Collections.SESSIONS, session_key) is None:
                return OperationOutcome.failure("session.delete", "session not found")
            signal_keys = [d["_key"] for d in self.records.fetch(Collections.SIGNALS, Eq("session_id", session_key))]
            memory_keys = [d["_key"] for d in self.records.fetch(Collections.MEMORIES, Eq("session_id", session_key))]
            with self.records.transaction() as tx:
                for key in signal_keys:
                    tx.delete(Collections.SIGNALS, key)
                for key in memory_keys:
                    tx.update(Collections.MEMORIES, key, {"session_id": None})
                tx.delete(Collections.SESSIONS, session_key)
        except Exception as e:
            logger.error(f"Failed to delete session {session_key}: {e}")
            return OperationOutcome.failure("session.delete", "persistence failed", error=e)

        logger.info(f"Deleted session {session_key} ({len(signal_keys)} signals)")
        return OperationOutcome.success(
            "session.delete",
            record_id=session_key,
            deleted_signals=len(signal_keys),
            unlinked_memories=len(memory_keys),
        )

    def _now(self) -> datetime:
        return ensure_utc(self._clock())


__all__ = ["SessionManager"]
