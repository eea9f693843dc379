# maxwell/config.py
"""
Configuration for the Maxwell agent runner.

Every fixed path, marker and interval the runner depends on lives here. The
defaults describe the container layout the host mounts; each value can be
overridden from the environment (or a .env file next to the project) so the
runner can be exercised outside a container.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings
import structlog


logger = structlog.get_logger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"
_PACKAGE_DIR = Path(__file__).resolve().parent

OUTPUT_START_MARKER = "---NANOCLAW_OUTPUT_START---"
OUTPUT_END_MARKER = "---NANOCLAW_OUTPUT_END---"
PERSONA_PREAMBLE = "You are Maxwell, a personal assistant."
SCHEDULED_TASK_MARKER = "[SCHEDULED TASK]\n\n"


class RunnerConfig(BaseSettings):
    """Everything the runner needs to know about its container."""

    # ---- Mailbox ----
    ipc_input_dir: Path = Field(Path("/workspace/ipc/input"), alias="MAXWELL_IPC_INPUT_DIR")
    close_sentinel: Optional[Path] = Field(None, alias="MAXWELL_CLOSE_SENTINEL")
    poll_interval: float = Field(0.5, alias="MAXWELL_POLL_INTERVAL")

    # ---- Framed output ----
    output_start_marker: str = Field(OUTPUT_START_MARKER, alias="MAXWELL_OUTPUT_START_MARKER")
    output_end_marker: str = Field(OUTPUT_END_MARKER, alias="MAXWELL_OUTPUT_END_MARKER")

    # ---- Sandbox ----
    workspace_root: Path = Field(Path("/workspace"), alias="MAXWELL_WORKSPACE_ROOT")
    group_dir: Path = Field(Path("/workspace/group"), alias="MAXWELL_GROUP_DIR")
    shell: str = Field("/bin/bash", alias="MAXWELL_SHELL")

    # ---- Instructions ----
    global_instructions_path: Path = Field(
        Path("/workspace/global/MAXWELL.md"), alias="MAXWELL_GLOBAL_INSTRUCTIONS"
    )
    group_instructions_path: Path = Field(
        Path("/workspace/group/MAXWELL.md"), alias="MAXWELL_GROUP_INSTRUCTIONS"
    )
    persona_preamble: str = Field(PERSONA_PREAMBLE, alias="MAXWELL_PERSONA_PREAMBLE")
    scheduled_task_marker: str = Field(SCHEDULED_TASK_MARKER, alias="MAXWELL_SCHEDULED_TASK_MARKER")

    # ---- External tool bridge ----
    # The host installs the companion server next to the runner package.
    mcp_command: str = Field("node", alias="MAXWELL_MCP_COMMAND")
    mcp_server_path: Path = Field(_PACKAGE_DIR / "ipc-mcp-stdio.js", alias="MAXWELL_MCP_SERVER_PATH")
    mcp_tool_prefix: str = Field("mcp__nanoclaw__", alias="MAXWELL_MCP_TOOL_PREFIX")
    mcp_timeout_seconds: Optional[float] = Field(None, alias="MAXWELL_MCP_TIMEOUT_SECONDS")

    # ---- Reasoning engine ----
    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    model: str = Field("claude-sonnet-4-5-20250929", alias="MAXWELL_MODEL")
    max_tokens: int = Field(8192, alias="MAXWELL_MAX_TOKENS")
    max_iterations: int = Field(50, alias="MAXWELL_MAX_ITERATIONS")
    max_retries: int = Field(3, alias="MAXWELL_MAX_RETRIES")
    max_tool_output_chars: int = Field(25000, alias="MAXWELL_MAX_TOOL_OUTPUT_CHARS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def _default_close_sentinel(self) -> "RunnerConfig":
        if self.close_sentinel is None:
            self.close_sentinel = self.ipc_input_dir / "_close"
        if self.poll_interval <= 0:
            logger.warning(
                "config.invalid_poll_interval",
                poll_interval=self.poll_interval,
                coerced_to=0.5,
            )
            self.poll_interval = 0.5
        return self
