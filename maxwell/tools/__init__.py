"""Tool system — the runner's hands in the container."""
from maxwell.tools.executor import ToolExecutor, ToolExecutionResult
from maxwell.tools.registry import ToolDefinition, ToolRegistry

__all__ = ["ToolRegistry", "ToolDefinition", "ToolExecutor", "ToolExecutionResult"]
