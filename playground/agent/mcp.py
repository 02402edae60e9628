"""MCP tool-server connections: connect, merge tool schemas, dispatch calls.

Each connection is held open by its own task for the lifetime of one request.
The transport and session contexts are entered and exited inside that task,
which anyio's cancel scopes require.
"""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import AbstractAsyncContextManager, AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Callable, Iterable, Protocol

import httpx
from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamable_http_client
from mcp.types import CallToolResult, Implementation, ListToolsResult, Tool

from playground.agent.messages import ToolSchema, tool_message
from playground.observability.metrics import get_generation_metrics
from playground.observability.redaction import redact
from playground.schemas import MCPServerConfig

logger = logging.getLogger(__name__)

CLIENT_INFO = Implementation(name="playground-client", version="0.0.1")
HTTP_TIMEOUT = httpx.Timeout(30.0, read=300.0)
UNKNOWN_TOOL_BUCKET = "<unknown>"


class MCPConnectError(RuntimeError):
    """Transport or handshake failure for one server."""

    def __init__(self, server: MCPServerConfig, cause: BaseException) -> None:
        super().__init__(f"{server.name}: {cause.__class__.__name__}: {cause}")
        self.server = server
        self.cause = cause


class MCPSession(Protocol):
    async def list_tools(self) -> ListToolsResult: ...

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult: ...


SessionFactory = Callable[[MCPServerConfig], AbstractAsyncContextManager[MCPSession]]


@asynccontextmanager
async def open_mcp_session(server: MCPServerConfig) -> AsyncIterator[ClientSession]:
    headers = dict(server.headers or {})
    async with AsyncExitStack() as stack:
        if server.protocol == "sse":
            read, write = await stack.enter_async_context(sse_client(server.url, headers=headers))
        else:
            http_client = await stack.enter_async_context(
                httpx.AsyncClient(headers=headers, timeout=HTTP_TIMEOUT, follow_redirects=True)
            )
            read, write, _ = await stack.enter_async_context(
                streamable_http_client(server.url, http_client=http_client)
            )
        session = await stack.enter_async_context(ClientSession(read, write, client_info=CLIENT_INFO))
        await session.initialize()
        yield session


def mcp_tool_to_schema(tool: Tool) -> ToolSchema:
    return ToolSchema(
        name=tool.name,
        description=tool.description or tool.name,
        parameters=dict(tool.inputSchema or {"type": "object", "properties": {}}),
        strict=True,
    )


def mcp_tool_to_function(tool: Tool) -> dict[str, Any]:
    return mcp_tool_to_schema(tool).to_function()


class MCPServerConnection:
    def __init__(self, server: MCPServerConfig, session_factory: SessionFactory = open_mcp_session) -> None:
        self.server = server
        self.session: MCPSession | None = None
        self.tools: list[ToolSchema] = []
        self._session_factory = session_factory
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._failure: BaseException | None = None
        self._listed: ListToolsResult | None = None

    @property
    def connected(self) -> bool:
        return self.session is not None

    def declares(self, tool_name: str) -> bool:
        return any(tool.name == tool_name for tool in self.tools)

    async def open(self) -> None:
        self._task = asyncio.create_task(self._hold(), name=f"mcp:{self.server.id}")
        try:
            await self._ready.wait()
        except asyncio.CancelledError:
            self._task.cancel()
            raise
        if self._failure is not None:
            raise MCPConnectError(self.server, self._failure) from self._failure
        if self._listed is None:
            raise MCPConnectError(self.server, ConnectionError("session closed during handshake"))
        self.tools = [mcp_tool_to_schema(tool) for tool in self._listed.tools]

    async def _hold(self) -> None:
        try:
            async with self._session_factory(self.server) as session:
                self._listed = await session.list_tools()
                self.session = session
                self._ready.set()
                await self._closing.wait()
        except Exception as exc:  # noqa: BLE001
            if self._ready.is_set():
                logger.warning(
                    "mcp_connection_lost",
                    extra={"server": self.server.name, "outcome": _describe(exc)},
                )
            else:
                self._failure = exc
        finally:
            self.session = None
            self._ready.set()

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        if self.session is None:
            raise RuntimeError(f"MCP server {self.server.name} is not connected")
        return await self.session.call_tool(name, arguments)

    async def close(self) -> None:
        self._closing.set()
        if self._task is not None:
            await asyncio.wait({self._task})


async def connect_to_mcp_servers(
    servers: Iterable[MCPServerConfig],
    *,
    session_factory: SessionFactory = open_mcp_session,
    timeout_seconds: float | None = None,
) -> list[MCPServerConnection]:
    """Connect to every server concurrently; failed servers are logged and left out."""
    connections = [MCPServerConnection(server, session_factory) for server in servers]
    if not connections:
        return []

    for connection in connections:
        logger.debug(
            "mcp_connecting",
            extra={"server": redact({"name": connection.server.name, "url": connection.server.url, "headers": connection.server.headers})},
        )

    outcomes = await asyncio.gather(
        *(asyncio.wait_for(connection.open(), timeout_seconds) for connection in connections),
        return_exceptions=True,
    )
    unexpected = next(
        (outcome for outcome in outcomes if isinstance(outcome, BaseException) and not _is_connect_failure(outcome)),
        None,
    )
    if unexpected is not None:
        await close_mcp_connections(connections)
        raise unexpected

    metrics = get_generation_metrics()
    connected: list[MCPServerConnection] = []
    for connection, outcome in zip(connections, outcomes):
        if isinstance(outcome, BaseException):
            metrics.mcp_connect_failures_total += 1
            logger.warning(
                "mcp_connect_failed",
                extra={"server": connection.server.name, "outcome": _describe(outcome)},
            )
            await connection.close()
            continue
        logger.info(
            "mcp_connected",
            extra={"server": connection.server.name, "tools": len(connection.tools)},
        )
        connected.append(connection)

    _drop_duplicate_tools(connected)
    return connected


def _drop_duplicate_tools(connections: list[MCPServerConnection]) -> None:
    """First server in configuration order keeps a tool name; later duplicates are dropped."""
    seen: dict[str, str] = {}
    for connection in connections:
        kept: list[ToolSchema] = []
        for tool in connection.tools:
            owner = seen.get(tool.name)
            if owner is not None:
                logger.warning(
                    "mcp_duplicate_tool_dropped",
                    extra={"server": connection.server.name, "tool_name": tool.name, "outcome": f"kept on {owner}"},
                )
                continue
            seen[tool.name] = connection.server.name
            kept.append(tool)
        connection.tools = kept


def merge_tool_schemas(connections: Iterable[MCPServerConnection]) -> list[dict[str, Any]]:
    return [tool.to_function() for connection in connections for tool in connection.tools]


async def close_mcp_connections(connections: Iterable[MCPServerConnection]) -> None:
    await asyncio.gather(*(connection.close() for connection in connections))


@asynccontextmanager
async def mcp_connections(
    servers: Iterable[MCPServerConfig],
    *,
    session_factory: SessionFactory = open_mcp_session,
    timeout_seconds: float | None = None,
) -> AsyncIterator[list[MCPServerConnection]]:
    connections = await connect_to_mcp_servers(
        servers, session_factory=session_factory, timeout_seconds=timeout_seconds
    )
    try:
        yield connections
    finally:
        await close_mcp_connections(connections)


async def execute_mcp_tool(connections: Iterable[MCPServerConnection], tool_call: dict[str, Any]) -> dict[str, Any]:
    """Run one tool call; any failure comes back as a tool message with an ``error`` field."""
    call_id = str(tool_call.get("id") or "")
    function = tool_call.get("function")
    function = function if isinstance(function, dict) else {}
    name = str(function.get("name") or "")
    connection = next((conn for conn in connections if conn.declares(name)), None)
    metrics = get_generation_metrics()
    metrics.increment_tool_call(name if connection is not None else UNKNOWN_TOOL_BUCKET)

    try:
        arguments = _parse_arguments(function.get("arguments"))
        logger.debug("mcp_tool_call", extra={"tool_name": name, "tool_call_id": call_id})
        if connection is None:
            raise LookupError(f"Tool {name} not found in any connected MCP server")
        result = await connection.call_tool(name, arguments)
    except Exception as exc:  # noqa: BLE001
        metrics.tool_call_failures_total += 1
        logger.warning(
            "mcp_tool_failed",
            extra={"tool_name": name, "tool_call_id": call_id, "outcome": _describe(exc)},
        )
        return tool_message(call_id, json.dumps({"error": str(exc) or "Tool execution failed"}))

    logger.debug(
        "mcp_tool_result",
        extra={"tool_name": name, "tool_call_id": call_id, "outcome": "tool_error" if result.isError else "ok"},
    )
    content = [_dump_block(block) for block in result.content]
    return tool_message(call_id, json.dumps(content, ensure_ascii=False))


def _parse_arguments(raw_arguments: Any) -> dict[str, Any]:
    if isinstance(raw_arguments, dict):
        return raw_arguments
    if raw_arguments is None or (isinstance(raw_arguments, str) and not raw_arguments.strip()):
        return {}
    if not isinstance(raw_arguments, str):
        raise ValueError("Tool arguments must be a JSON-encoded string")
    try:
        parsed = json.loads(raw_arguments)
    except ValueError as exc:
        raise ValueError(f"Tool arguments are not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Tool arguments must be a JSON object")
    return parsed


def _dump_block(block: Any) -> Any:
    if hasattr(block, "model_dump"):
        return block.model_dump(mode="json", exclude_none=True)
    return block


def _is_connect_failure(exc: BaseException) -> bool:
    return isinstance(exc, (MCPConnectError, asyncio.TimeoutError))


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "timeout"
    if isinstance(exc, MCPConnectError):
        exc = exc.cause
    return f"{exc.__class__.__name__}: {exc}"
