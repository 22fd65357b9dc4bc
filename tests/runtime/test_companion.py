import pytest

from celiny.runtime.memory.companion import (
    Amplitude,
    Companion,
    Expression,
    ExpressionChanged,
    SilenceDetected,
    SpeechDetected,
    UtteranceFinished,
    create_companion,
    default_responder,
)
from celiny.runtime.memory.config import MemoryConfig, SessionConfig
from celiny.runtime.memory.memory_manager import MemoryManager
from celiny.runtime.memory.models import MemoryLayer, SessionType, SignalType
from celiny.runtime.memory.record_store import Collections, InMemoryRecordStore
from celiny.runtime.memory.session import SessionManager


def make_companion(**kwargs):
    store = InMemoryRecordStore()
    companion = create_companion(
        store,
        memory_config=MemoryConfig(),
        session_config=SessionConfig(),
        **kwargs,
    )
    return companion, store


def test_companion_requires_shared_serial_context():
    store = InMemoryRecordStore()
    with pytest.raises(ValueError):
        Companion(MemoryManager(store), SessionManager(store))


def test_process_user_input_stores_turns_and_replies():
    spoken = []
    companion, store = make_companion(on_reply=spoken.append)
    companion.start(SessionType.CONVERSATION)
    session_key = companion.sessions.current_session.key

    reply = companion.process_user_input("hello there")

    assert reply == "Hello! How can I help?"
    assert spoken == [reply]
    semantic = companion.memory.retrieve_by_layer(MemoryLayer.SEMANTIC)
    working = companion.memory.retrieve_by_layer(MemoryLayer.WORKING)
    assert [m.content for m in semantic] == ["User said: hello there"]
    assert semantic[0].tags == ["speech", "input", "user"]
    assert [m.content for m in working] == [f"I said: {reply}"]
    assert all(doc["session_id"] == session_key for doc in store.fetch(Collections.MEMORIES))


def test_responder_receives_recalled_context():
    seen = []

    def responder(text, context):
        seen.append([m.content for m in context])
        return "noted"

    companion, _ = make_companion(responder=responder)
    companion.process_user_input("I like green tea")
    companion.process_user_input("green tea")

    assert "User said: I like green tea" in seen[-1]


def test_failing_responder_falls_back_to_default():
    def responder(text, context):
        raise RuntimeError("llm down")

    companion, _ = make_companion(responder=responder)
    assert companion.process_user_input("how are you") == default_responder("how are you", [])


def test_events_record_signals_and_update_state():
    companion, _ = make_companion()
    companion.start()

    companion.handle_event(ExpressionChanged(Expression.HAPPY))
    companion.handle_event(ExpressionChanged(Expression.SAD))
    companion.handle_event(Amplitude(0.4))
    companion.handle_event(SpeechDetected())
    assert companion.is_listening
    assert companion.current_expression is Expression.LISTENING
    companion.handle_event(SilenceDetected())
    assert not companion.is_listening
    assert companion.current_expression is Expression.NEUTRAL

    expression = companion.sessions.get_signal_statistics(SignalType.EXPRESSION)
    assert expression.count == 2
    assert expression.max == pytest.approx(1.0)
    assert expression.min == pytest.approx(0.2)
    assert companion.sessions.get_signal_statistics(SignalType.VOICE_AMPLITUDE).count == 1


def test_utterance_event_runs_conversation_turn():
    companion, store = make_companion()
    companion.handle_event(UtteranceFinished("  "))
    assert store.fetch(Collections.MEMORIES) == []

    companion.handle_event(UtteranceFinished("tell me a story"))
    assert len(store.fetch(Collections.MEMORIES)) == 2


def test_stop_ends_session_and_consolidates():
    companion, _ = make_companion()
    companion.start()
    companion.speak("the sky is blue")
    companion.memory.retrieve("sky")
    companion.memory.retrieve("sky")

    outcome = companion.stop()

    assert outcome.ok
    assert outcome.data["promoted_episodic"] == 1
    assert not companion.sessions.is_session_active
    assert [m.content for m in companion.memory.retrieve_by_layer(MemoryLayer.EPISODIC)] == [
        "I said: the sky is blue"
    ]

    stats = companion.get_stats()
    assert stats.episodic_memories == 1
    assert stats.total_memories == 1
    assert stats.total_session_time >= 0.0
