"""
Claude Engine — the reasoning engine behind the runner.

This wraps the Anthropic Messages API in the ReasoningEngine interface. Each
submitted turn runs the familiar tool-use loop:

    while True:
        response = claude.messages.create(system, messages, tools)
        yield text + tool calls
        if not response.tool_calls:
            break
        results = execute(response.tool_calls)
        yield tool results
        messages.append(results)

Every model response and every batch of tool results becomes one
EngineEvent, so the controller can log actions as they happen and still
build the reply from text fragments alone. Conversation history is kept in
an InMemorySessionStore for the life of the process, and every tool_use
block stored there is answered by a tool_result before the turn ends.
"""

from __future__ import annotations

import time
from typing import Any, AsyncIterator, Iterable, Optional

import anthropic
import structlog

from maxwell.config import RunnerConfig
from maxwell.engine.base import EngineError, EngineEvent
from maxwell.engine.session import InMemorySessionStore
from maxwell.tools.executor import ToolExecutor
from maxwell.tools.registry import ToolDefinition, ToolRegistry

logger = structlog.get_logger(__name__)

ITERATION_LIMIT_NUDGE = (
    "\n\n[SYSTEM: You have reached your iteration limit after {tool_calls} tool "
    "operations. Briefly tell the user what you've accomplished so far and what "
    "is left to do.]"
)
ITERATION_LIMIT_FALLBACK = (
    "I've been working on your request but reached my iteration limit after "
    "{tool_calls} tool operations. Send another message if you'd like me to "
    "keep going."
)


def _text_parts(content: Iterable[Any]) -> list[str]:
    return [block.text for block in content if block.type == "text"]


class ClaudeEngine:
    """
    ReasoningEngine backed by Claude.

    The engine holds the system instructions, the frozen tool set and the
    session store. It does not retry failed turns: an API error surfaces as
    EngineError and ends the runner.
    """

    def __init__(
        self,
        instructions: str,
        config: RunnerConfig,
        client: Optional[Any] = None,
        sessions: Optional[InMemorySessionStore] = None,
    ):
        self._instructions = instructions
        self._model = config.model
        self._max_tokens = config.max_tokens
        self._max_iterations = max(1, int(config.max_iterations))
        self._max_tool_output = config.max_tool_output_chars
        self._sessions = sessions or InMemorySessionStore()
        self._registry: Optional[ToolRegistry] = None
        self._executor: Optional[ToolExecutor] = None

        if client is not None:
            self._client = client
        else:
            try:
                self._client = anthropic.AsyncAnthropic(
                    api_key=config.api_key,
                    max_retries=config.max_retries,
                )
            except Exception as exc:
                raise EngineError(f"Failed to initialize Claude client: {exc}") from exc

        logger.info("claude_engine.initialized", model=self._model)

    def register_tools(self, tools: Iterable[ToolDefinition]) -> None:
        if self._registry is not None:
            raise EngineError("Tools are already registered for this engine.")
        registry = ToolRegistry()
        for tool in tools:
            registry.register(tool)
        registry.freeze()
        self._registry = registry
        self._executor = ToolExecutor(registry, max_output_chars=self._max_tool_output)

    async def submit_turn(
        self,
        user_id: str,
        session_id: str,
        text: str,
    ) -> AsyncIterator[EngineEvent]:
        if self._registry is None or self._executor is None:
            raise EngineError("register_tools() must be called before submitting turns.")

        messages = self._sessions.get_or_create(user_id, session_id).messages
        messages.append({"role": "user", "content": text})
        tools = self._registry.get_api_tools()
        tool_call_count = 0

        for iteration in range(1, self._max_iterations + 1):
            response = await self._think(messages, tools)
            messages.append({"role": "assistant", "content": response.content})

            calls = [
                {"id": block.id, "name": block.name, "input": block.input}
                for block in response.content
                if block.type == "tool_use"
            ]
            yield EngineEvent(
                parts=_text_parts(response.content),
                actions=[{"type": "tool_call", **call} for call in calls] or None,
            )

            if not calls:
                logger.debug(
                    "claude_engine.turn_complete",
                    session_id=session_id,
                    iterations=iteration,
                    tool_calls=tool_call_count,
                    stop_reason=response.stop_reason,
                )
                return

            # A reply cut off at max_tokens can still carry tool_use blocks;
            # they are answered like any other so the history stays valid.
            if response.stop_reason != "tool_use":
                logger.warning(
                    "claude_engine.tool_use_without_stop",
                    stop_reason=response.stop_reason,
                    tool_calls=len(calls),
                )

            results = []
            for call in calls:
                tool_call_count += 1
                results.append(
                    await self._executor.execute(
                        tool_use_id=call["id"],
                        tool_name=call["name"],
                        tool_input=call["input"] if isinstance(call["input"], dict) else {},
                    )
                )

            messages.append({
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": result.tool_use_id,
                        "content": result.content,
                        "is_error": not result.success,
                    }
                    for result in results
                ],
            })
            yield EngineEvent(
                actions=[
                    {
                        "type": "tool_result",
                        "id": result.tool_use_id,
                        "name": result.tool_name,
                        "success": result.success,
                        "error": result.error,
                    }
                    for result in results
                ],
            )

        logger.warning(
            "claude_engine.max_iterations",
            max=self._max_iterations,
            tool_calls=tool_call_count,
        )
        yield await self._wrap_up(messages, tools, tool_call_count)

    async def _wrap_up(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_call_count: int,
    ) -> EngineEvent:
        """
        One last call, with tool use switched off, asking for a summary.

        The tools array is still sent because the history holds tool blocks.
        Only the text is stored, and any failure falls back to a canned
        reply, so the session stays usable for the next mailbox turn.
        """
        try:
            response = await self._think(
                messages,
                tools,
                system_suffix=ITERATION_LIMIT_NUDGE.format(tool_calls=tool_call_count),
                tool_choice={"type": "none"},
            )
            text = "".join(_text_parts(response.content))
            if not text:
                raise EngineError("empty wrap-up response")
        except Exception as exc:
            logger.warning("claude_engine.wrap_up_failed", error=str(exc))
            text = ITERATION_LIMIT_FALLBACK.format(tool_calls=tool_call_count)

        messages.append({"role": "assistant", "content": text})
        return EngineEvent(parts=[text])

    async def _think(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        system_suffix: str = "",
        tool_choice: Optional[dict[str, Any]] = None,
    ) -> Any:
        start_time = time.monotonic()
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": [
                {
                    "type": "text",
                    "text": self._instructions + system_suffix,
                    "cache_control": {"type": "ephemeral"},
                }
            ],
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools
            if tool_choice is not None:
                kwargs["tool_choice"] = tool_choice

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error(
                "claude_engine.api_error",
                error=str(e),
                status=getattr(e, "status_code", None),
            )
            raise EngineError(f"Claude API error: {e}") from e

        logger.debug(
            "claude_engine.call_complete",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            elapsed_seconds=round(time.monotonic() - start_time, 2),
            stop_reason=response.stop_reason,
        )
        return response
