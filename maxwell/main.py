"""
Main — the runner's ignition sequence.

When the host starts a container, this module:
  1. Configures logging (stderr only; stdout belongs to the framed protocol)
  2. Parses the ContainerInput read from stdin
  3. Assembles the system instructions
  4. Registers the sandbox tools and bridges the companion MCP tools
  5. Builds the reasoning engine with the frozen tool set
  6. Hands control to the SessionController until the host closes the session

Startup failures (bad input, a companion that will not come up, an engine
that cannot be built) are framed as a single error output and end the
process with exit code 1 before any turn runs.
"""

from __future__ import annotations

import logging
import sys
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import ValidationError

from maxwell.config import RunnerConfig
from maxwell.controller import SessionController
from maxwell.engine.base import ReasoningEngine
from maxwell.framing import OutputFramer
from maxwell.instructions import assemble_instructions
from maxwell.mailbox import MailboxPoller
from maxwell.models import ContainerInput, ContainerOutput
from maxwell.tools.mcp import (
    MCPClient,
    MCPServerConfig,
    bridge_external_tools,
    conversation_env,
)
from maxwell.tools.registry import ToolRegistry
from maxwell.tools.sandbox import register_sandbox_tools

COMPONENT = "agent-runner"
MCP_SERVER_NAME = "nanoclaw"

EngineFactory = Callable[[str, RunnerConfig], ReasoningEngine]
Bridge = Callable[..., Awaitable[MCPClient]]


class InputContractError(ValueError):
    """Raised when stdin does not carry a valid ContainerInput."""


def _add_component(logger, method_name, event_dict):
    event_dict.setdefault("component", COMPONENT)
    return event_dict


_logging_configured = False


def configure_logging(verbose: bool = False) -> None:
    """Route structlog through stdlib logging to stderr.

    Safe to call more than once; later calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(
        stream=sys.stderr,
        format="%(message)s",
        level=logging.DEBUG if verbose else logging.INFO,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _add_component,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger(__name__)


def parse_container_input(raw: str) -> ContainerInput:
    try:
        return ContainerInput.model_validate_json(raw)
    except ValidationError as exc:
        raise InputContractError(str(exc)) from exc


def _default_engine_factory(instructions: str, config: RunnerConfig) -> ReasoningEngine:
    from maxwell.engine.claude import ClaudeEngine

    return ClaudeEngine(instructions, config)


async def run_runner(
    config: RunnerConfig,
    raw_input: str,
    framer: Optional[OutputFramer] = None,
    engine_factory: EngineFactory = _default_engine_factory,
    bridge: Bridge = bridge_external_tools,
) -> int:
    """Run one container session end to end and return the process exit code."""
    framer = framer or OutputFramer(
        start_marker=config.output_start_marker,
        end_marker=config.output_end_marker,
    )

    try:
        container_input = parse_container_input(raw_input)
    except InputContractError as exc:
        logger.error("runner.input_invalid", error=str(exc))
        framer.emit(ContainerOutput.failure(f"Failed to parse input: {exc}"))
        return 1

    mcp_client: Optional[MCPClient] = None
    try:
        try:
            instructions = assemble_instructions(
                config.global_instructions_path,
                config.group_instructions_path,
                preamble=config.persona_preamble,
            )

            registry = ToolRegistry()
            register_sandbox_tools(registry, config)
            mcp_client = await bridge(
                registry,
                MCPServerConfig(
                    name=MCP_SERVER_NAME,
                    command=config.mcp_command,
                    args=[str(config.mcp_server_path)],
                    env=conversation_env(
                        container_input.chat_jid,
                        container_input.group_folder,
                        container_input.is_main,
                    ),
                    timeout_seconds=config.mcp_timeout_seconds,
                ),
                tool_prefix=config.mcp_tool_prefix,
            )
            registry.freeze()

            engine = engine_factory(instructions, config)
            engine.register_tools(registry)
        except Exception as exc:
            logger.error("runner.startup_failed", error=str(exc), error_type=type(exc).__name__)
            framer.emit(ContainerOutput.failure(str(exc)))
            return 1

        logger.info("runner.started", tools=registry.count)
        poller = MailboxPoller(config.ipc_input_dir, config.close_sentinel, config.poll_interval)
        controller = SessionController(
            container_input,
            engine,
            poller,
            framer,
            scheduled_task_marker=config.scheduled_task_marker,
        )
        exit_code = await controller.run()
        logger.info(
            "runner.finished",
            exit_code=exit_code,
            turns=controller.turn_count,
            frames=framer.frames_written,
            **poller.stats,
        )
        return exit_code
    finally:
        if mcp_client is not None:
            await mcp_client.shutdown()
