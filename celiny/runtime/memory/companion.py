"""
Companion Coordinator - glue between event sources and the memory core

WHAT: Turns face/audio/voice events into memory writes and behavior signals
WHERE: celiny/runtime/memory/companion.py - top of the runtime stack
WHO: App shell / event loop; tests
TIME: Per-event cost of one store/record call

Consumes derived events only (expression changes, speech/silence, amplitude,
finished utterances); tracking, capture and synthesis internals stay outside.
Every handler runs inside the memory manager's SerialContext, so callbacks
fired from background threads are marshalled into the single writer.

Lifecycle:
- start(): open a session for the profile
- stop(): end the session, then consolidate memories
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

from .config import MemoryConfig, SessionConfig, open_record_store
from .events import OperationOutcome
from .memory_manager import MemoryManager
from .models import Memory, SessionType, SignalType
from .record_store import RecordStore, fold_text
from .serial import SerialContext, serialized
from .session import SessionManager
from .telemetry import TelemetryClient

logger = logging.getLogger(__name__)


class Expression(str, Enum):
    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    SURPRISED = "surprised"
    THINKING = "thinking"
    SPEAKING = "speaking"
    LISTENING = "listening"


EXPRESSION_VALUES = {
    Expression.NEUTRAL: 0.5,
    Expression.HAPPY: 1.0,
    Expression.SAD: 0.2,
    Expression.SURPRISED: 0.9,
    Expression.THINKING: 0.6,
    Expression.SPEAKING: 0.7,
    Expression.LISTENING: 0.6,
}

USER_INPUT_IMPORTANCE = 0.7
SPEECH_OUTPUT_IMPORTANCE = 0.6
CONTEXT_LIMIT = 3


@dataclass(frozen=True, slots=True)
class ExpressionChanged:
    expression: Expression


@dataclass(frozen=True, slots=True)
class SpeechDetected:
    pass


@dataclass(frozen=True, slots=True)
class SilenceDetected:
    pass


@dataclass(frozen=True, slots=True)
class Amplitude:
    value: float


@dataclass(frozen=True, slots=True)
class UtteranceFinished:
    text: str


SourceEvent = Union[ExpressionChanged, SpeechDetected, SilenceDetected, Amplitude, UtteranceFinished]
Responder = Callable[[str, Sequence[Memory]], str]


def default_responder(text: str, context: Sequence[Memory]) -> str:
    """Placeholder replies until a conversation model is plugged in."""
    lowered = fold_text(text)
    words = lowered.replace(",", " ").replace("!", " ").split()
    if "hello" in words or "hi" in words or "ola" in words:
        return "Hello! How can I help?"
    if "how are you" in lowered:
        return "I'm great! And you?"
    return "I see. Tell me more."


@dataclass(frozen=True, slots=True)
class CompanionStats:
    total_memories: int
    working_memories: int
    episodic_memories: int
    semantic_memories: int
    total_session_time: float
    average_session_duration: float


class Companion:
    """Coordinates memory and session recording for one companion instance.

    ``memory`` and ``sessions`` must share one SerialContext.
    """

    def __init__(
        self,
        memory: MemoryManager,
        sessions: SessionManager,
        *,
        responder: Optional[Responder] = None,
        on_reply: Optional[Callable[[str], None]] = None,
    ) -> None:
        if sessions.serial is not memory.serial:
            raise ValueError("MemoryManager and SessionManager must share one SerialContext")
        self.memory = memory
        self.sessions = sessions
        self._serial = memory.serial
        self._responder = responder or default_responder
        self._on_reply = on_reply
        self.current_expression = Expression.NEUTRAL
        self.is_listening = False
        self.is_speaking = False

    # ---------------------- lifecycle ----------------------
    @serialized
    def start(self, session_type: SessionType = SessionType.PASSIVE) -> OperationOutcome:
        outcome = self.sessions.start_session(session_type, self.memory.profile)
        logger.info("Companion started")
        return outcome

    @serialized
    def stop(self) -> OperationOutcome:
        """End the session and consolidate; returns the consolidation outcome."""
        ended = self.sessions.end_session()
        if not ended:
            logger.debug(f"Session end skipped: {ended.detail}")
        self.is_listening = False
        self.is_speaking = False
        outcome = self.memory.consolidate_memories()
        logger.info("Companion stopped")
        return outcome

    # ---------------------- conversation ----------------------
    @serialized
    def speak(self, text: str) -> OperationOutcome:
        if self._on_reply is not None:
            try:
                self._on_reply(text)
            except Exception as e:
                logger.warning(f"Reply sink failed: {e}")
        return self.memory.store(
            f"I said: {text}",
            importance=SPEECH_OUTPUT_IMPORTANCE,
            tags=["speech", "output"],
            session_id=self._session_key(),
        )

    @serialized
    def process_user_input(self, text: str) -> str:
        self.memory.store(
            f"User said: {text}",
            importance=USER_INPUT_IMPORTANCE,
            tags=["speech", "input", "user"],
            session_id=self._session_key(),
        )
        context: List[Memory] = self.memory.retrieve(text, limit=CONTEXT_LIMIT)
        logger.debug(f"Context retrieved: {len(context)} memories")

        try:
            reply = self._responder(text, context)
        except Exception as e:
            logger.error(f"Responder failed: {e}")
            reply = default_responder(text, context)
        self.speak(reply)
        return reply

    # ---------------------- events ----------------------
    @serialized
    def handle_event(self, event: SourceEvent) -> None:
        if isinstance(event, ExpressionChanged):
            expression = Expression(event.expression)
            self.current_expression = expression
            self.sessions.record_signal(
                SignalType.EXPRESSION,
                EXPRESSION_VALUES[expression],
                metadata={"expression": expression.value},
            )
        elif isinstance(event, Amplitude):
            self.sessions.record_signal(SignalType.VOICE_AMPLITUDE, event.value)
        elif isinstance(event, SpeechDetected):
            self.is_listening = True
            self.current_expression = Expression.LISTENING
        elif isinstance(event, SilenceDetected):
            self.is_listening = False
            if not self.is_speaking:
                self.current_expression = Expression.NEUTRAL
        elif isinstance(event, UtteranceFinished):
            if event.text.strip():
                self.process_user_input(event.text)
        else:
            logger.warning(f"Ignoring unknown event: {event!r}")

    # ---------------------- statistics ----------------------
    @serialized
    def get_stats(self) -> CompanionStats:
        stats = self.memory.get_memory_stats()
        return CompanionStats(
            total_memories=stats.total,
            working_memories=stats.working_count,
            episodic_memories=stats.episodic_count,
            semantic_memories=stats.semantic_count,
            total_session_time=self.sessions.get_total_session_time(),
            average_session_duration=self.sessions.get_average_session_duration(),
        )

    def _session_key(self) -> Optional[str]:
        session = self.sessions.current_session
        return session.key if session is not None else None


def create_companion(
    store: Optional[RecordStore] = None,
    *,
    memory_config: Optional[MemoryConfig] = None,
    session_config: Optional[SessionConfig] = None,
    clock: Optional[Callable[[], datetime]] = None,
    telemetry: Optional[TelemetryClient] = None,
    responder: Optional[Responder] = None,
    on_reply: Optional[Callable[[str], None]] = None,
) -> Companion:
    """Wire a companion whose managers share one store and one SerialContext."""

    store = store if store is not None else open_record_store()
    serial = SerialContext()
    memory = MemoryManager(
        store,
        config=memory_config or MemoryConfig.from_env(),
        clock=clock,
        telemetry=telemetry,
        serial=serial,
    )
    sessions = SessionManager(
        store,
        config=session_config or SessionConfig.from_env(),
        clock=clock,
        telemetry=telemetry,
        serial=serial,
    )
    return Companion(memory, sessions, responder=responder, on_reply=on_reply)


__all__ = [
    "create_companion",
    "Amplitude",
    "Companion",
    "CompanionStats",
    "EXPRESSION_VALUES",
    "Expression",
    "ExpressionChanged",
    "SilenceDetected",
    "SourceEvent",
    "SpeechDetected",
    "UtteranceFinished",
    "default_responder",
]
