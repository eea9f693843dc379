"""Reasoning engine — the interface the controller drives, and its Claude adapter."""
from maxwell.engine.base import EngineError, EngineEvent, ReasoningEngine
from maxwell.engine.session import EngineSession, InMemorySessionStore

__all__ = [
    "EngineError",
    "EngineEvent",
    "EngineSession",
    "InMemorySessionStore",
    "ReasoningEngine",
]
