"""
Session Turn Controller — the runner's state machine.

One controller drives one conversation for the life of the process:

    ACTIVE:  submit text → consume every engine event → frame the reply
    IDLE:    wait on the mailbox for the next text (or the close sentinel)
    CLOSED:  terminal; run() returns the exit code

Only one turn is ever in flight, and the mailbox is only read while IDLE.
There is no retry: if consuming a turn fails, the failure is framed as an
error output and the process exits non-zero so the host can decide whether
to relaunch.
"""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from maxwell.config import SCHEDULED_TASK_MARKER
from maxwell.engine.base import ReasoningEngine
from maxwell.framing import OutputFramer
from maxwell.mailbox import MailboxPoller
from maxwell.models import ContainerInput, ContainerOutput

logger = structlog.get_logger(__name__)

ACTION_LOG_LIMIT = 100


class ControllerState(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    CLOSED = "closed"


def mint_session_id() -> str:
    return f"session-{int(time.time() * 1000)}"


class SessionController:
    """Runs turns against a reasoning engine until the host closes the session."""

    def __init__(
        self,
        container_input: ContainerInput,
        engine: ReasoningEngine,
        poller: MailboxPoller,
        framer: OutputFramer,
        scheduled_task_marker: str = SCHEDULED_TASK_MARKER,
        session_id_factory: Callable[[], str] = mint_session_id,
    ):
        self._input = container_input
        self._engine = engine
        self._poller = poller
        self._framer = framer
        self._scheduled_task_marker = scheduled_task_marker

        self._session_id = container_input.session_id or session_id_factory()
        self._state = ControllerState.ACTIVE
        self._turn_count = 0

        logger.info(
            "controller.initialized",
            session_id=self._session_id,
            resumed=container_input.session_id is not None,
            group_folder=container_input.group_folder,
            is_main=container_input.is_main,
        )

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def turn_count(self) -> int:
        return self._turn_count

    def initial_prompt(self) -> str:
        prompt = self._input.prompt
        if self._input.is_scheduled_task:
            prompt = f"{self._scheduled_task_marker}{prompt}"
        return prompt

    async def run_turn(self, text: str) -> str:
        """Submit one user message and return the concatenated reply text."""
        self._turn_count += 1
        logger.info("controller.turn_started", turn=self._turn_count, session_id=self._session_id)

        result = ""
        async for event in self._engine.submit_turn(self._input.chat_jid, self._session_id, text):
            for part in event.parts:
                if part:
                    result += part
            if event.actions:
                self._log_actions(event.actions)

        logger.info("controller.turn_complete", turn=self._turn_count, result_length=len(result))
        return result

    async def run(self) -> int:
        """Drive the session until close (exit 0) or a fatal turn error (exit 1)."""
        prompt: Optional[str] = self.initial_prompt()
        try:
            while prompt is not None:
                self._state = ControllerState.ACTIVE
                result = await self.run_turn(prompt)
                self._framer.emit(ContainerOutput.success(result, self._session_id))

                self._state = ControllerState.IDLE
                prompt = await self._poller.wait_for_next()
        except Exception as exc:
            logger.error("controller.turn_failed", turn=self._turn_count, error=str(exc))
            self._framer.emit(ContainerOutput.failure(str(exc)))
            self._state = ControllerState.CLOSED
            return 1

        logger.info("controller.closed", turns=self._turn_count)
        self._state = ControllerState.CLOSED
        return 0

    @staticmethod
    def _log_actions(actions: list[dict[str, Any]]) -> None:
        summary = json.dumps(actions, ensure_ascii=False, default=str)[:ACTION_LOG_LIMIT]
        logger.info("controller.action_received", actions=summary)
