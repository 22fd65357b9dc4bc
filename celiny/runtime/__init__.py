"""
Runtime Module

WHAT: Runtime subsystem for the Celiny companion memory engine
WHERE: celiny/runtime/ - sits between event sources and conversation logic
WHO: The companion coordinator, conversation logic, and tests
TIME: Store/retrieve on local embedded storage, sub-millisecond in memory

Provides the tiered memory model (working → episodic → semantic), the
session/behavior-signal recorder, and the serial execution boundary that all
mutating calls pass through. Face tracking, audio capture and voice synthesis
are external collaborators; they only feed derived events into this layer.

Memory Architecture:
- working: short-lived, capacity-bounded recent content
- episodic: working memories promoted by repeated recall
- semantic: high-importance or heavily reinforced long-term knowledge
"""

__all__ = ["memory"]
