"""CLI — the ``maxwell-runner`` command the container starts."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Optional

import click


@click.command("maxwell-runner")
@click.option(
    "--ipc-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Mailbox directory (overrides MAXWELL_IPC_INPUT_DIR).",
)
@click.option(
    "--poll-interval",
    type=float,
    default=None,
    help="Seconds between mailbox polls while idle.",
)
@click.option(
    "--mcp-server",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to the companion MCP server script.",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug-level diagnostics on stderr.")
def cli(
    ipc_dir: Optional[Path],
    poll_interval: Optional[float],
    mcp_server: Optional[Path],
    verbose: bool,
) -> None:
    """Run one agent session: read a ContainerInput from stdin, answer on stdout."""
    from maxwell.main import configure_logging

    configure_logging(verbose)

    from maxwell.config import RunnerConfig
    from maxwell.main import run_runner

    overrides: dict[str, Any] = {}
    if ipc_dir is not None:
        overrides["MAXWELL_IPC_INPUT_DIR"] = ipc_dir
    if poll_interval is not None:
        overrides["MAXWELL_POLL_INTERVAL"] = poll_interval
    if mcp_server is not None:
        overrides["MAXWELL_MCP_SERVER_PATH"] = mcp_server

    config = RunnerConfig(**overrides)
    raw_input = sys.stdin.read()
    sys.exit(asyncio.run(run_runner(config, raw_input)))
