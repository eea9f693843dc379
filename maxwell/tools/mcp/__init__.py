"""
MCP Bridge — the runner's connection to the host's IPC tool server.

The host ships a companion MCP server (``ipc-mcp-stdio.js``) that knows how
to talk back to the host: send chat messages, schedule tasks, and so on. The
runner launches it as a child process, speaks JSON-RPC to it over stdio
(newline-delimited frames), and wraps every tool it advertises as a local
ToolDefinition.

The bridge does not know the companion's schemas ahead of time. Wrapped
tools accept any argument object and forward it verbatim; the companion's
``tools/call`` result is handed back untouched.

Unlike tool calls, startup failures are fatal: if the companion cannot be
launched, refuses the handshake, or cannot list its tools, ToolBridgeError
is raised and the runner aborts before the first turn.
"""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from maxwell import __version__
from maxwell.tools.registry import ToolDefinition, ToolRegistry

logger = structlog.get_logger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "maxwell-agent-runner"
DEFAULT_TOOL_PREFIX = "mcp__nanoclaw__"
# Tool results can be large; asyncio's default 64 KiB line limit is too small.
_STREAM_LIMIT = 16 * 1024 * 1024

OPEN_INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {},
    "additionalProperties": True,
    "description": "Parameters for the MCP tool",
}


class ToolBridgeError(RuntimeError):
    """Raised when the companion tool server cannot be brought up."""


@dataclass
class MCPServerConfig:
    """Configuration for launching the companion MCP server."""

    name: str
    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    timeout_seconds: Optional[float] = None  # None = wait indefinitely


@dataclass
class MCPTool:
    """A tool discovered from the companion server."""

    name: str
    description: str
    input_schema: dict[str, Any]


def conversation_env(chat_jid: str, group_folder: str, is_main: bool) -> dict[str, str]:
    """Environment identifying the conversation to the companion server."""
    return {
        "NANOCLAW_CHAT_JID": chat_jid,
        "NANOCLAW_GROUP_FOLDER": group_folder,
        "NANOCLAW_IS_MAIN": "1" if is_main else "0",
    }


def _extract_jsonrpc_result(response: Any) -> Any:
    """Extract result payload from a JSON-RPC response."""

    if not isinstance(response, dict):
        raise RuntimeError(f"Invalid JSON-RPC response type: {type(response).__name__}")

    if "error" in response and response["error"] is not None:
        error_obj = response.get("error", {})
        if isinstance(error_obj, dict):
            code = error_obj.get("code", "unknown")
            message = error_obj.get("message", "Unknown MCP error")
            raise RuntimeError(f"MCP error {code}: {message}")
        raise RuntimeError(f"MCP error: {error_obj}")

    return response.get("result")


class _StdioTransport:
    """JSON-RPC over a child process's stdin/stdout, one message per line."""

    def __init__(self, config: MCPServerConfig, process: asyncio.subprocess.Process):
        self._config = config
        self._process = process
        self._request_id = 0
        self._io_lock = asyncio.Lock()
        self._broken = False
        self._stderr_task: Optional[asyncio.Task] = None
        if self._process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._drain_stderr())

    @classmethod
    async def start(cls, config: MCPServerConfig) -> "_StdioTransport":
        env = os.environ.copy()
        env.update({str(k): str(v) for k, v in (config.env or {}).items()})

        process = await asyncio.create_subprocess_exec(
            config.command,
            *config.args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            limit=_STREAM_LIMIT,
        )
        return cls(config=config, process=process)

    async def _drain_stderr(self) -> None:
        assert self._process.stderr is not None
        try:
            while True:
                line = await self._process.stderr.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if text:
                    logger.debug(
                        "mcp_bridge.server_stderr",
                        server=self._config.name,
                        message=text[:500],
                    )
        except Exception as exc:  # pragma: no cover - best-effort logging path
            logger.debug(
                "mcp_bridge.stderr_drain_failed",
                server=self._config.name,
                error=str(exc),
            )

    async def _send_message(self, payload: dict[str, Any]) -> None:
        assert self._process.stdin is not None
        raw = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self._process.stdin.write(raw + b"\n")
        await self._process.stdin.drain()

    async def _read_message(self) -> dict[str, Any]:
        assert self._process.stdout is not None
        while True:
            line = await self._process.stdout.readline()
            if not line:
                raise RuntimeError(f"MCP stdio server '{self._config.name}' closed unexpectedly.")
            decoded = line.decode("utf-8", errors="replace").strip()
            if not decoded:
                continue
            parsed = json.loads(decoded)
            if not isinstance(parsed, dict):
                raise RuntimeError(
                    f"MCP stdio server '{self._config.name}' returned non-object JSON payload."
                )
            return parsed

    async def request(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        if self._broken:
            raise RuntimeError(
                f"MCP stdio transport for '{self._config.name}' is broken "
                f"(previous timeout corrupted the stream)."
            )
        async with self._io_lock:
            self._request_id += 1
            request_id = self._request_id
            payload: dict[str, Any] = {
                "jsonrpc": "2.0",
                "id": request_id,
                "method": method,
            }
            if params is not None:
                payload["params"] = params

            await self._send_message(payload)

            while True:
                try:
                    message = await asyncio.wait_for(
                        self._read_message(),
                        timeout=self._config.timeout_seconds,
                    )
                except asyncio.TimeoutError as exc:
                    self._broken = True
                    raise RuntimeError(
                        f"MCP stdio request '{method}' timed out after "
                        f"{self._config.timeout_seconds}s on server '{self._config.name}'."
                    ) from exc
                if message.get("id") != request_id:
                    logger.debug(
                        "mcp_bridge.unexpected_message",
                        expected_id=request_id,
                        received_id=message.get("id"),
                        method=message.get("method"),
                        server=self._config.name,
                    )
                    continue
                return _extract_jsonrpc_result(message)

    async def notify(self, method: str, params: Optional[dict[str, Any]] = None) -> None:
        async with self._io_lock:
            payload: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
            if params is not None:
                payload["params"] = params
            await self._send_message(payload)

    async def close(self) -> None:
        process = self._process
        if process.returncode is None:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=2.0)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        if self._stderr_task:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass


class MCPClient:
    """
    Client for the companion MCP server.

    Lifecycle:
    1. connect() - Launch the server and perform the initialize handshake
    2. discover_tools() - tools/list, exactly once
    3. register_tools() - Add namespaced pass-through tools to the registry
    4. execute_tool() - Forward tools/call to the server
    5. shutdown() - Terminate the server process
    """

    def __init__(self, config: MCPServerConfig, tool_prefix: str = DEFAULT_TOOL_PREFIX):
        self._config = config
        self._tool_prefix = tool_prefix
        self._transport: Optional[Any] = None
        self._discovered_tools: list[MCPTool] = []

    async def connect(self) -> None:
        """Launch the companion and complete the MCP handshake."""
        try:
            self._transport = await _StdioTransport.start(self._config)
        except (OSError, ValueError) as exc:
            raise ToolBridgeError(
                f"Failed to launch MCP server '{self._config.name}': {exc}"
            ) from exc

        params = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": CLIENT_NAME, "version": __version__},
        }
        try:
            await self._transport.request("initialize", params)
            await self._transport.notify("notifications/initialized", {})
        except Exception as exc:
            await self.shutdown()
            raise ToolBridgeError(
                f"MCP handshake with '{self._config.name}' failed: {exc}"
            ) from exc

        logger.info(
            "mcp_bridge.server_connected",
            name=self._config.name,
            command=self._config.command,
        )

    async def discover_tools(self) -> list[MCPTool]:
        """Query the server for its tools (tools/list)."""
        if self._transport is None:
            raise ToolBridgeError(f"MCP server '{self._config.name}' is not connected")
        try:
            result = await self._transport.request("tools/list", {})
        except Exception as exc:
            raise ToolBridgeError(
                f"Listing tools on '{self._config.name}' failed: {exc}"
            ) from exc

        self._discovered_tools = self._parse_tools_list(result)
        logger.info(
            "mcp_bridge.tools_discovered",
            server=self._config.name,
            count=len(self._discovered_tools),
        )
        return list(self._discovered_tools)

    @staticmethod
    def _parse_tools_list(result: Any) -> list[MCPTool]:
        tools_payload: list[Any]
        if isinstance(result, dict):
            raw_tools = result.get("tools", [])
            tools_payload = raw_tools if isinstance(raw_tools, list) else []
        elif isinstance(result, list):
            tools_payload = result
        else:
            tools_payload = []

        parsed: list[MCPTool] = []
        for item in tools_payload:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            if not isinstance(name, str) or not name.strip():
                continue

            description = item.get("description")
            if not isinstance(description, str):
                description = ""

            schema = item.get("inputSchema") or {}
            if not isinstance(schema, dict):
                schema = {}

            parsed.append(MCPTool(name=name.strip(), description=description, input_schema=schema))
        return parsed

    def register_tools(self, registry: ToolRegistry) -> int:
        """Register every discovered tool as a namespaced pass-through tool."""

        def handler_factory(tool_name: str):
            async def handler(**kwargs: Any) -> Any:
                return await self.execute_tool(tool_name, kwargs)

            return handler

        for tool in self._discovered_tools:
            registry.register(
                ToolDefinition(
                    name=f"{self._tool_prefix}{tool.name}",
                    description=tool.description,
                    input_schema=dict(OPEN_INPUT_SCHEMA),
                    handler=handler_factory(tool.name),
                    category=f"mcp:{self._config.name}",
                )
            )

        count = len(self._discovered_tools)
        logger.info("mcp_bridge.tools_registered", count=count, prefix=self._tool_prefix)
        return count

    async def execute_tool(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """Execute a tool on the companion via tools/call and return its raw result."""
        if self._transport is None:
            raise RuntimeError(f"MCP server '{self._config.name}' is not connected")

        logger.info("mcp_bridge.executing_tool", server=self._config.name, tool=tool_name)
        return await self._transport.request(
            "tools/call",
            {"name": tool_name, "arguments": arguments},
        )

    async def shutdown(self) -> None:
        """Terminate the companion process."""
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await transport.close()
            logger.info("mcp_bridge.server_disconnected", name=self._config.name)
        except Exception as e:
            logger.error("mcp_bridge.shutdown_error", server=self._config.name, error=str(e))

    @property
    def connected(self) -> bool:
        return self._transport is not None


async def bridge_external_tools(
    registry: ToolRegistry,
    config: MCPServerConfig,
    tool_prefix: str = DEFAULT_TOOL_PREFIX,
) -> MCPClient:
    """Connect, discover once, and register. Any failure raises ToolBridgeError."""
    client = MCPClient(config, tool_prefix=tool_prefix)
    await client.connect()
    try:
        await client.discover_tools()
        client.register_tools(registry)
    except ToolBridgeError:
        await client.shutdown()
        raise
    except Exception as exc:
        await client.shutdown()
        raise ToolBridgeError(f"Registering MCP tools failed: {exc}") from exc
    return client
