"""
Companion Memory System - Working, Episodic & Semantic Tiers

WHAT: Local library for the companion's tiered memory and session recording
WHERE: celiny/runtime/memory/ - runtime subsystem
WHO: Companion coordinator and conversation logic
TIME: In-process, local embedded storage only

Memory Layers:
- working: recent low-importance content, capacity 7, expires unrecalled after 5 min
- episodic: working memories promoted by repeated recall
- semantic: high-importance or heavily reinforced long-term knowledge

Operations (local library - no network services):
- store(content, importance, tags): classify and persist, then clean the working tier
- retrieve(similar_to, limit): ranked recall that reinforces what it returns
- retrieve_by_layer(layer, limit): newest-first listing of one tier
- consolidate_memories(): promote working memories by importance/access history
- get_memory_stats(): per-layer counts

Sessions (separate manager):
- start_session / end_session / record_signal with buffered signal persistence
- history, total/average duration, per-type signal statistics

Boundary Notes:
- All mutating calls funnel through one SerialContext (single writer)
- The record store is injected; nothing here holds global state
- Failures degrade to empty results or failed OperationOutcomes, never crashes
"""

from .classifier import classify  # noqa: F401
from .companion import (  # noqa: F401
    Amplitude,
    Companion,
    CompanionStats,
    Expression,
    ExpressionChanged,
    SilenceDetected,
    SpeechDetected,
    UtteranceFinished,
    create_companion,
)
from .config import MemoryConfig, SessionConfig, StoreConfig, open_record_store  # noqa: F401
from .consolidation import ConsolidationReport, promotion_target  # noqa: F401
from .events import MemoryEvent, MemoryEventKind, OperationOutcome  # noqa: F401
from .memory_manager import MemoryManager  # noqa: F401
from .models import (  # noqa: F401
    BehaviorSignal,
    Memory,
    MemoryLayer,
    MemoryStats,
    Session,
    SessionType,
    SignalStatistics,
    SignalType,
    UserProfile,
)
from .profiles import load_or_create_profile, wipe_all_data  # noqa: F401
from .ranking import EmbeddingRanker, LexicalRanker, RetrievalRanker  # noqa: F401
from .record_store import (  # noqa: F401
    Collections,
    InMemoryRecordStore,
    RecordNotFoundError,
    RecordStore,
    RecordStoreError,
    Transaction,
    TransactionClosedError,
)
from .serial import SerialContext  # noqa: F401
from .session import SessionManager  # noqa: F401
from .sqlite_store import SqliteRecordStore  # noqa: F401
from .telemetry import (  # noqa: F401
    LoggingTelemetryClient,
    NoOpTelemetryClient,
    RecordingTelemetryClient,
    TelemetryClient,
    TelemetrySpan,
)

__all__ = [
    "Amplitude",
    "BehaviorSignal",
    "Collections",
    "Companion",
    "CompanionStats",
    "ConsolidationReport",
    "EmbeddingRanker",
    "Expression",
    "ExpressionChanged",
    "InMemoryRecordStore",
    "LexicalRanker",
    "LoggingTelemetryClient",
    "Memory",
    "MemoryConfig",
    "MemoryEvent",
    "MemoryEventKind",
    "MemoryLayer",
    "MemoryManager",
    "MemoryStats",
    "NoOpTelemetryClient",
    "OperationOutcome",
    "RecordingTelemetryClient",
    "RecordNotFoundError",
    "RecordStore",
    "RecordStoreError",
    "RetrievalRanker",
    "SerialContext",
    "Session",
    "SessionConfig",
    "SessionManager",
    "SessionType",
    "SignalStatistics",
    "SignalType",
    "SilenceDetected",
    "SpeechDetected",
    "SqliteRecordStore",
    "StoreConfig",
    "TelemetryClient",
    "TelemetrySpan",
    "Transaction",
    "TransactionClosedError",
    "UserProfile",
    "UtteranceFinished",
    "classify",
    "create_companion",
    "load_or_create_profile",
    "open_record_store",
    "promotion_target",
    "wipe_all_data",
]
