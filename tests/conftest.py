from __future__ import annotations

import importlib
from contextlib import asynccontextmanager
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient
from mcp.types import CallToolResult, ListToolsResult, TextContent, Tool

import sse_starlette.sse as sse_module

import playground.main as main_module
from playground.agent.providers.base import GenerationArgs, ProviderAdapter
from playground.deps import get_generation_service
from playground.schemas import MCPServerConfig


class FakeMCPSession:
    """In-memory MCP session: tool name -> handler(arguments) -> text."""

    def __init__(self, tools: dict[str, Callable[[dict[str, Any]], str]], description: str | None = None) -> None:
        self.tools = tools
        self.description = description
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def list_tools(self) -> ListToolsResult:
        return ListToolsResult(
            tools=[
                Tool(
                    name=name,
                    description=self.description,
                    inputSchema={"type": "object", "properties": {"city": {"type": "string"}}},
                )
                for name in self.tools
            ]
        )

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        self.calls.append((name, dict(arguments or {})))
        text = self.tools[name](dict(arguments or {}))
        return CallToolResult(content=[TextContent(type="text", text=text)])


def make_session_factory(outcomes: dict[str, FakeMCPSession | Exception]):
    """Session factory keyed by server id; an exception value fails that server's handshake."""

    @asynccontextmanager
    async def factory(server: MCPServerConfig):
        outcome = outcomes[server.id]
        if isinstance(outcome, Exception):
            raise outcome
        yield outcome

    return factory


def mcp_server(server_id: str, protocol: str = "http") -> MCPServerConfig:
    return MCPServerConfig(id=server_id, name=server_id, url=f"http://{server_id}.test/mcp", protocol=protocol)


class ScriptedAdapter(ProviderAdapter):
    """Adapter stub replaying one scripted response per round."""

    def __init__(
        self,
        completions: list[dict[str, Any]] | None = None,
        streams: list[list[dict[str, Any]]] | None = None,
    ) -> None:
        self._completions = list(completions or [])
        self._streams = list(streams or [])
        self.calls: list[GenerationArgs] = []

    async def generate(self, args: GenerationArgs) -> dict[str, Any]:
        self.calls.append(args)
        return self._completions.pop(0)

    async def stream(self, args: GenerationArgs):
        self.calls.append(args)
        for chunk in self._streams.pop(0):
            yield chunk


def completion(content: str = "", finish_reason: str = "stop", tool_calls: list | None = None, tokens: int = 0) -> dict:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    payload: dict[str, Any] = {"choices": [{"index": 0, "message": message, "finish_reason": finish_reason}]}
    if tokens:
        payload["usage"] = {"completion_tokens": tokens}
    return payload


def delta(content: str | None = None, finish_reason: str | None = None, tool_calls: list | None = None) -> dict:
    chunk_delta: dict[str, Any] = {}
    if content is not None:
        chunk_delta["content"] = content
    if tool_calls is not None:
        chunk_delta["tool_calls"] = tool_calls
    return {"choices": [{"index": 0, "delta": chunk_delta, "finish_reason": finish_reason}]}


def tool_call(call_id: str, name: str, arguments: str = "{}") -> dict:
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}


@pytest.fixture(autouse=True)
def reset_sse_exit_event():
    # Older sse-starlette releases keep a module-level exit event bound to the first event loop.
    app_status = getattr(sse_module, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield


@pytest.fixture
def isolated_client(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PLAYGROUND_HF_API_URL", "http://hub.test/api")
    monkeypatch.setenv("PLAYGROUND_HF_ROUTER_URL", "http://router.test/v1")
    module = importlib.reload(main_module)
    with TestClient(module.app) as client:
        yield client
    module.app.dependency_overrides.pop(get_generation_service, None)
