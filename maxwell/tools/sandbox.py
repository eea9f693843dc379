"""
Sandbox Tools — the runner's local capabilities.

Four tools are exposed to the reasoning engine: ``bash``, ``read_file``,
``write_file`` and ``list_files``. Paths are resolved against the group data
directory (``/workspace/group``) and must land strictly inside the workspace
mount (``/workspace/``); ``..`` segments, absolute paths and symlinks that
point elsewhere are refused.

Handlers never raise. Every outcome is a dict with ``status`` set to
``"success"`` or ``"error"`` so the model can read what went wrong and carry
on.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Any, Optional

import structlog

from maxwell.config import RunnerConfig
from maxwell.tools.registry import ToolDefinition, ToolRegistry

logger = structlog.get_logger(__name__)

SANDBOX_CATEGORY = "sandbox"


def _is_within(path: str, root: str) -> bool:
    return path.startswith(root.rstrip(os.sep) + os.sep)


def resolve_sandbox_path(
    requested: str,
    group_dir: Path,
    workspace_root: Path,
) -> tuple[Path, Optional[str]]:
    """Resolve *requested* for a file tool.

    Returns ``(resolved_path, None)`` on success or ``(Path(), error_msg)``
    when the path escapes the workspace.
    """
    denied = f"Access denied: path must be inside {workspace_root}"
    if "\x00" in requested:
        return Path(), "Invalid path: embedded null byte"
    try:
        lexical = os.path.normpath(os.path.join(str(group_dir), requested))
    except (TypeError, ValueError) as exc:
        return Path(), f"Invalid path: {exc}"

    if not _is_within(lexical, os.path.normpath(str(workspace_root))):
        return Path(), denied

    # Re-resolve via realpath to catch symlink escapes
    try:
        real = os.path.realpath(lexical)
    except (OSError, ValueError) as exc:
        return Path(), f"Invalid path: {exc}"
    if not _is_within(real, os.path.realpath(str(workspace_root))):
        return Path(), denied

    return Path(lexical), None


def _error(message: str, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"status": "error", "error": message}
    payload.update(extra)
    return payload


class SandboxTools:
    """Handlers for the four local tools, bound to one workspace layout."""

    def __init__(self, group_dir: Path, workspace_root: Path, shell: str = "/bin/bash"):
        self._group_dir = Path(group_dir)
        self._workspace_root = Path(workspace_root)
        self._shell = shell

    def _resolve(self, requested: str) -> tuple[Path, Optional[str]]:
        resolved, err = resolve_sandbox_path(requested, self._group_dir, self._workspace_root)
        if err:
            logger.warning("sandbox.path_denied", requested=requested)
        return resolved, err

    def bash(self, command: str) -> dict[str, Any]:
        cwd = str(self._group_dir) if self._group_dir.is_dir() else None
        try:
            completed = subprocess.run(
                command,
                shell=True,
                executable=self._shell,
                cwd=cwd,
                capture_output=True,
                text=True,
            )
        except (OSError, ValueError) as exc:
            return _error(f"Could not run command: {exc}", stderr=None)

        if completed.returncode != 0:
            message = f"Command failed with exit code {completed.returncode}: {command}"
            if completed.stderr:
                message = f"{message}\n{completed.stderr}"
            return _error(
                message,
                stderr=completed.stderr,
                output=completed.stdout,
                exit_code=completed.returncode,
            )
        return {"status": "success", "output": completed.stdout, "stderr": completed.stderr}

    def read_file(self, path: str) -> dict[str, Any]:
        resolved, err = self._resolve(path)
        if err:
            return _error(err)
        try:
            content = resolved.read_text(encoding="utf-8", errors="replace")
        except (OSError, ValueError) as exc:
            return _error(f"Error reading file: {exc}")
        return {"status": "success", "content": content}

    def write_file(self, path: str, content: str) -> dict[str, Any]:
        resolved, err = self._resolve(path)
        if err:
            return _error(err)
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.write_text(content, encoding="utf-8")
        except (OSError, ValueError) as exc:
            return _error(f"Error writing file: {exc}")
        return {"status": "success", "message": f"File written to {path}"}

    def list_files(self, path: str) -> dict[str, Any]:
        resolved, err = self._resolve(path)
        if err:
            return _error(err)
        try:
            files = sorted(os.listdir(resolved))
        except (OSError, ValueError) as exc:
            return _error(f"Error listing directory: {exc}")
        return {"status": "success", "files": files}

    def definitions(self) -> list[ToolDefinition]:
        path_description = f"Relative path from {self._group_dir}"
        return [
            ToolDefinition(
                name="bash",
                description=(
                    "Run a bash command in the container. Returns stdout and stderr. "
                    "A non-zero exit status comes back as an error result carrying "
                    "the captured stderr."
                ),
                input_schema={
                    "type": "object",
                    "properties": {
                        "command": {"type": "string", "description": "The command to run"},
                    },
                    "required": ["command"],
                },
                handler=self.bash,
                category=SANDBOX_CATEGORY,
            ),
            ToolDefinition(
                name="read_file",
                description="Read the contents of a file.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": f"{path_description} to the file"},
                    },
                    "required": ["path"],
                },
                handler=self.read_file,
                category=SANDBOX_CATEGORY,
            ),
            ToolDefinition(
                name="write_file",
                description=(
                    "Write content to a file. Overwrites if it exists. "
                    "Creates parent directories if needed."
                ),
                input_schema={
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": f"{path_description} to the file"},
                        "content": {"type": "string", "description": "The content to write"},
                    },
                    "required": ["path", "content"],
                },
                handler=self.write_file,
                category=SANDBOX_CATEGORY,
            ),
            ToolDefinition(
                name="list_files",
                description="List files in a directory.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": f"{path_description} to the directory"},
                    },
                    "required": ["path"],
                },
                handler=self.list_files,
                category=SANDBOX_CATEGORY,
            ),
        ]


def register_sandbox_tools(registry: ToolRegistry, config: RunnerConfig) -> SandboxTools:
    """Register the four sandbox tools for the configured workspace."""
    tools = SandboxTools(config.group_dir, config.workspace_root, shell=config.shell)
    for definition in tools.definitions():
        registry.register(definition)
    logger.info(
        "sandbox.tools_registered",
        group_dir=str(config.group_dir),
        workspace_root=str(config.workspace_root),
    )
    return tools
