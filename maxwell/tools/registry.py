"""
Tool Registry — the runner's catalog of capabilities.

Every tool the reasoning engine may call is registered here with its JSON
Schema, description and handler. The engine adapter turns the registry into
the tools array it sends to the model, and the executor looks names up here
to find the handler.

The registry is filled once at startup (sandbox tools first, then whatever
the MCP bridge discovers) and frozen before the engine is built. After that
the tool set never changes for the life of the process.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class ToolDefinition:
    """
    A registered tool.

    ``input_schema`` is sent to the model verbatim. The handler receives the
    model's arguments as keyword arguments and may be sync or async.
    """
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Callable[..., Any]
    category: str = "general"             # "sandbox", "mcp:<server>"
    timeout: Optional[float] = None       # seconds; None = no limit

    def to_api_format(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    """Name → ToolDefinition, closed for registration once frozen."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}
        self._frozen = False

    def register(self, tool: ToolDefinition) -> None:
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{tool.name}': the tool set is frozen once the session starts."
            )
        existing = self._tools.get(tool.name)
        if existing is not None:
            logger.warning(
                "tool_registry.name_collision",
                name=tool.name,
                existing_category=existing.category,
                new_category=tool.category,
            )
            raise ValueError(f"Tool '{tool.name}' is already registered ({existing.category}).")

        self._tools[tool.name] = tool
        logger.debug("tool_registry.registered", name=tool.name, category=tool.category)

    def freeze(self) -> None:
        self._frozen = True
        logger.info("tool_registry.frozen", count=len(self._tools))

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def get_api_tools(self) -> list[dict[str, Any]]:
        """The tools array for a model call, in registration order."""
        return [tool.to_api_format() for tool in self._tools.values()]

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(list(self._tools.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    @property
    def count(self) -> int:
        return len(self._tools)
