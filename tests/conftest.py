"""
Shared fixtures for the runner test suite.

Provides a throwaway workspace layout under tmp_path, a RunnerConfig that
points at it, and a scripted ReasoningEngine so controller tests never need
a real model.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Optional

import pytest

from maxwell.config import RunnerConfig
from maxwell.engine.base import EngineEvent
from maxwell.main import configure_logging
from maxwell.models import ContainerInput
from maxwell.tools.registry import ToolDefinition


@pytest.fixture(autouse=True, scope="session")
def _stderr_logging():
    """Keep structlog off stdout so framed-output assertions only see frames."""
    configure_logging(verbose=True)


# ---------------------------------------------------------------------------
# Workspace layout
# ---------------------------------------------------------------------------

@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    """A fake /workspace with group, global and ipc/input directories."""
    root = tmp_path / "workspace"
    (root / "group").mkdir(parents=True)
    (root / "global").mkdir()
    (root / "ipc" / "input").mkdir(parents=True)
    return root


@pytest.fixture()
def config(workspace: Path) -> RunnerConfig:
    return RunnerConfig(
        MAXWELL_IPC_INPUT_DIR=workspace / "ipc" / "input",
        MAXWELL_POLL_INTERVAL=0.01,
        MAXWELL_WORKSPACE_ROOT=workspace,
        MAXWELL_GROUP_DIR=workspace / "group",
        MAXWELL_GLOBAL_INSTRUCTIONS=workspace / "global" / "MAXWELL.md",
        MAXWELL_GROUP_INSTRUCTIONS=workspace / "group" / "MAXWELL.md",
        ANTHROPIC_API_KEY="test-key",
    )


@pytest.fixture()
def container_input() -> ContainerInput:
    return ContainerInput.model_validate({
        "prompt": "hello",
        "groupFolder": "family",
        "chatJid": "123@g.us",
        "isMain": False,
    })


# ---------------------------------------------------------------------------
# Scripted engine
# ---------------------------------------------------------------------------

class ScriptedEngine:
    """
    A fake ReasoningEngine that replays pre-scripted turns in order.

    Each entry in ``turns`` is either a list of EngineEvents to stream or an
    exception to raise mid-stream (after any events listed before it).
    """

    def __init__(self, turns: Optional[list[list[Any]]] = None):
        self._turns = list(turns or [])
        self.submitted: list[tuple[str, str, str]] = []
        self.registered_tools: Optional[list[ToolDefinition]] = None

    def register_tools(self, tools: Iterable[ToolDefinition]) -> None:
        self.registered_tools = list(tools)

    async def submit_turn(self, user_id: str, session_id: str, text: str) -> AsyncIterator[EngineEvent]:
        self.submitted.append((user_id, session_id, text))
        script = self._turns.pop(0) if self._turns else [EngineEvent(parts=[f"echo: {text}"])]
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item


@pytest.fixture()
def scripted_engine() -> ScriptedEngine:
    return ScriptedEngine()


@pytest.fixture()
def make_engine():
    """Factory for ScriptedEngine instances with a given turn script."""
    return ScriptedEngine
