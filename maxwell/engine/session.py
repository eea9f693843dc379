"""
In-memory conversation sessions.

Each (user, session id) pair gets its own message history. The store hands
out a *reference* to that list; the engine appends to it in place, so there
is no write-back step. Nothing is persisted: sessions live exactly as long
as the runner process.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class EngineSession:
    """Conversation history for one session."""

    user_id: str
    session_id: str
    messages: list[dict[str, Any]] = field(default_factory=list)


class InMemorySessionStore:
    """Process-lifetime session store keyed by user and session id."""

    def __init__(self) -> None:
        self._sessions: dict[tuple[str, str], EngineSession] = {}

    def get_or_create(self, user_id: str, session_id: str) -> EngineSession:
        key = (user_id, session_id)
        session = self._sessions.get(key)
        if session is None:
            session = EngineSession(user_id=user_id, session_id=session_id)
            self._sessions[key] = session
            logger.info("session_store.created", session_id=session_id)
        return session
