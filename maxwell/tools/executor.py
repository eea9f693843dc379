"""
Tool Executor — runs one tool call on behalf of the model.

Whatever happens inside a handler, the caller gets a ToolExecutionResult
back: unknown names, bad arguments, exceptions and timeouts all become
failed results the model can read and react to. Successful output is
rendered to the text that goes into the tool_result block, capped at
``max_output_chars`` so one oversized file or listing cannot flood the
context window.

No timeout is applied unless a tool declares one. A hung shell command or
MCP call therefore stalls the turn, and the host is expected to watch the
container from outside.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from maxwell.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)

DEFAULT_MAX_OUTPUT_CHARS = 25000
_TRUNCATION_NOTE_ROOM = 100

# JSON Schema type → Python types accepted for it
_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


@dataclass
class ToolExecutionResult:
    """
    Outcome of one tool call.

    ``result`` is the handler's raw return value. ``content`` is the text
    the model sees: the rendered (and possibly truncated) output on success,
    ``"Error: ..."`` on failure.
    """
    tool_use_id: str
    tool_name: str
    success: bool
    content: str
    result: Any = None
    error: Optional[str] = None


def validate_arguments(schema: dict[str, Any], arguments: dict[str, Any]) -> Optional[str]:
    """
    Check required keys and top-level JSON types against a tool schema.

    Returns an error message, or None when the arguments are acceptable.
    Properties the schema does not describe are passed through untouched,
    which is what lets open MCP schemas accept any object.
    """
    missing = [name for name in schema.get("required", []) if name not in arguments]
    if missing:
        return f"Missing required parameter(s): {', '.join(missing)}"

    properties = schema.get("properties") or {}
    for name, value in arguments.items():
        declared = properties.get(name)
        expected = declared.get("type") if isinstance(declared, dict) else None
        accepted = _JSON_TYPES.get(expected) if isinstance(expected, str) else None
        if accepted is None:
            continue
        # bool is an int subclass in Python; JSON keeps them apart
        if isinstance(value, bool) and expected in ("integer", "number"):
            return f"Parameter '{name}' expected {expected}, got boolean"
        if not isinstance(value, accepted):
            return f"Parameter '{name}' expected {expected}, got {type(value).__name__}"
    return None


def render_tool_output(output: Any, max_chars: int = DEFAULT_MAX_OUTPUT_CHARS) -> str:
    """Render a handler's return value as compact JSON text and cap its length."""
    if isinstance(output, str):
        text = output
    else:
        try:
            text = json.dumps(output, ensure_ascii=False, separators=(",", ":"), default=str)
        except (TypeError, ValueError):
            text = str(output)

    if len(text) <= max_chars:
        return text
    keep = max(0, max_chars - _TRUNCATION_NOTE_ROOM)
    return f"{text[:keep]}\n\n[Output truncated: {len(text)} chars total, showing first {keep}]"


class ToolExecutor:
    """Dispatches tool calls to the handlers in a frozen ToolRegistry."""

    def __init__(self, registry: ToolRegistry, max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS):
        self._registry = registry
        self._max_output_chars = max_output_chars

    async def execute(
        self,
        tool_use_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
    ) -> ToolExecutionResult:
        tool = self._registry.get(tool_name)
        if tool is None:
            return self._failed(tool_use_id, tool_name, f"Unknown tool: {tool_name}")

        problem = validate_arguments(tool.input_schema, tool_input)
        if problem:
            return self._failed(tool_use_id, tool_name, problem)

        logger.info(
            "tool_executor.executing",
            tool_name=tool_name,
            tool_use_id=tool_use_id,
            input_keys=sorted(tool_input),
        )
        started = time.monotonic()
        try:
            if inspect.iscoroutinefunction(tool.handler):
                pending = tool.handler(**tool_input)
            else:
                pending = self._run_in_thread(tool.handler, tool_input)
            output = await asyncio.wait_for(pending, timeout=tool.timeout)
        except asyncio.TimeoutError:
            return self._failed(
                tool_use_id, tool_name, f"Tool execution timed out after {tool.timeout}s"
            )
        except Exception as exc:
            logger.debug("tool_executor.traceback", tool_name=tool_name, traceback=traceback.format_exc())
            return self._failed(tool_use_id, tool_name, f"{type(exc).__name__}: {exc}")

        logger.info(
            "tool_executor.success",
            tool_name=tool_name,
            elapsed=round(time.monotonic() - started, 2),
        )
        return ToolExecutionResult(
            tool_use_id=tool_use_id,
            tool_name=tool_name,
            success=True,
            content=render_tool_output(output, self._max_output_chars),
            result=output,
        )

    @staticmethod
    def _failed(tool_use_id: str, tool_name: str, error: str) -> ToolExecutionResult:
        logger.warning("tool_executor.failed", tool_name=tool_name, error=error)
        return ToolExecutionResult(
            tool_use_id=tool_use_id,
            tool_name=tool_name,
            success=False,
            content=f"Error: {error}",
            error=error,
        )

    @staticmethod
    async def _run_in_thread(handler: Callable[..., Any], arguments: dict[str, Any]) -> Any:
        """Run a blocking handler on a daemon thread so a hung call never blocks exit."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()

        def _settle(value: Any, error: Optional[BaseException]) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(value)

        def _target() -> None:
            try:
                value, error = handler(**arguments), None
            except Exception as exc:
                value, error = None, exc
            try:
                loop.call_soon_threadsafe(_settle, value, error)
            except RuntimeError:
                # Loop already closed; nobody is waiting for this result.
                pass

        threading.Thread(target=_target, daemon=True).start()
        return await future
