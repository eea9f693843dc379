"""
Reasoning engine interface.

The turn controller never talks to a model directly. It hands a user turn to
something that satisfies ReasoningEngine and consumes the events that come
back. The production adapter is ClaudeEngine; tests use a scripted fake.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Iterable, Optional, Protocol, runtime_checkable

from maxwell.tools.registry import ToolDefinition


class EngineError(RuntimeError):
    """Raised when the engine cannot be built or a turn cannot be completed."""


@dataclass
class EngineEvent:
    """
    One step of a turn's response stream.

    ``parts`` are text fragments meant for the user, in order. ``actions``
    are side-channel notices (tool calls, tool results) that are logged but
    never shown.
    """
    parts: list[str] = field(default_factory=list)
    actions: Optional[list[dict[str, Any]]] = None

    @property
    def text(self) -> str:
        return "".join(self.parts)


@runtime_checkable
class ReasoningEngine(Protocol):
    def register_tools(self, tools: Iterable[ToolDefinition]) -> None:
        """Hand over the session's complete tool set. Called exactly once."""
        ...

    def submit_turn(
        self,
        user_id: str,
        session_id: str,
        text: str,
    ) -> AsyncIterator[EngineEvent]:
        """Submit one user message and stream the response events."""
        ...
