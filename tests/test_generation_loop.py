"""Unit tests for playground/agent/loop.py."""
from __future__ import annotations

import asyncio
import json

import pytest

from conftest import FakeMCPSession, ScriptedAdapter, completion, delta, make_session_factory, mcp_server, tool_call
from playground.agent.loop import GenerationError, generate_loop, normalize_finish_reason
from playground.agent.mcp import MCPServerConnection, connect_to_mcp_servers
from playground.agent.providers.base import GenerationArgs
from playground.observability.metrics import get_generation_metrics
from playground.sse.chunks import StreamChunk, parse_frame_line
from playground.sse.writer import StreamWriter


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _args() -> GenerationArgs:
    return GenerationArgs(model="test-model", messages=[{"role": "user", "content": "weather in Paris?"}])


async def _weather_connections() -> tuple[list[MCPServerConnection], FakeMCPSession]:
    session = FakeMCPSession({"get_weather": lambda arguments: f"sunny in {arguments.get('city', '?')}"})
    connections = await connect_to_mcp_servers(
        [mcp_server("weather")],
        session_factory=make_session_factory({"weather": session}),
    )
    return connections, session


async def _close(connections: list[MCPServerConnection]) -> None:
    for connection in connections:
        await connection.close()


def _chunks(frames: list[bytes]) -> list[StreamChunk]:
    chunks = []
    for frame in frames:
        for line in frame.decode().split("\n"):
            chunk = parse_frame_line(line)
            if chunk is not None:
                chunks.append(chunk)
    return chunks


# ─── Finish reasons ───────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("stop", "stop"),
        ("eos_token", "stop"),
        ("length", "length"),
        ("max_tokens", "length"),
        ("content_filter", "content_filter"),
        ("tool_calls", "tool_calls"),
        ("TOOL_USE", "tool_calls"),
        ("something_new", "stop"),
        (None, "stop"),
    ],
)
def test_normalize_finish_reason(raw, expected):
    assert normalize_finish_reason(raw) == expected


# ─── Non-streaming rounds ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_loop_terminates_after_one_round_on_stop():
    adapter = ScriptedAdapter(completions=[completion("Hello!", tokens=5)])

    result = await generate_loop(adapter=adapter, args=_args())

    assert len(adapter.calls) == 1
    assert result.rounds == 1
    assert result.finish_reason == "stop"
    assert result.message == {"role": "assistant", "content": "Hello!"}
    assert result.completion_tokens == 5


@pytest.mark.asyncio
async def test_loop_runs_tool_round_trip_in_two_rounds():
    connections, session = await _weather_connections()
    adapter = ScriptedAdapter(
        completions=[
            completion("", "tool_calls", [tool_call("call_42", "get_weather", '{"city": "Paris"}')], tokens=7),
            completion("It is sunny in Paris.", tokens=6),
        ]
    )

    try:
        result = await generate_loop(adapter=adapter, args=_args(), connections=connections)
    finally:
        await _close(connections)

    assert result.rounds == 2
    assert result.finish_reason == "stop"
    assert result.completion_tokens == 13
    assert session.calls == [("get_weather", {"city": "Paris"})]

    second_round = adapter.calls[1].messages
    tool_messages = [message for message in second_round if message["role"] == "tool"]
    assert len(tool_messages) == 1
    assert tool_messages[0]["tool_call_id"] == "call_42"
    assert json.loads(tool_messages[0]["content"]) == [{"type": "text", "text": "sunny in Paris"}]
    assert second_round[-2]["tool_calls"][0]["id"] == "call_42"


@pytest.mark.asyncio
async def test_loop_does_not_mutate_caller_messages():
    args = _args()
    adapter = ScriptedAdapter(completions=[completion("hi")])

    result = await generate_loop(adapter=adapter, args=args)

    assert len(args.messages) == 1
    assert len(result.messages) == 2


@pytest.mark.asyncio
async def test_failed_tool_is_fed_back_and_loop_continues():
    adapter = ScriptedAdapter(
        completions=[
            completion("", "tool_calls", [tool_call("call_1", "missing_tool")]),
            completion("Sorry, that tool is unavailable."),
        ]
    )

    result = await generate_loop(adapter=adapter, args=_args())

    tool_result = adapter.calls[1].messages[-1]
    assert tool_result["role"] == "tool"
    assert "error" in json.loads(tool_result["content"])
    assert result.rounds == 2


@pytest.mark.asyncio
async def test_tool_results_keep_requested_order():
    two_tools = FakeMCPSession({"slow": lambda arguments: "slow", "fast": lambda arguments: "fast"})
    connections = await connect_to_mcp_servers(
        [mcp_server("tools")], session_factory=make_session_factory({"tools": two_tools})
    )
    adapter = ScriptedAdapter(
        completions=[
            completion("", "tool_calls", [tool_call("call_a", "slow"), tool_call("call_b", "fast")]),
            completion("done"),
        ]
    )

    try:
        await generate_loop(adapter=adapter, args=_args(), connections=connections)
    finally:
        await _close(connections)

    tool_ids = [message["tool_call_id"] for message in adapter.calls[1].messages if message["role"] == "tool"]
    assert tool_ids == ["call_a", "call_b"]


@pytest.mark.asyncio
async def test_tool_calls_reason_without_calls_is_terminal():
    adapter = ScriptedAdapter(completions=[completion("odd", "tool_calls")])

    result = await generate_loop(adapter=adapter, args=_args())

    assert result.rounds == 1
    assert result.finish_reason == "stop"


@pytest.mark.asyncio
async def test_round_cap_stops_runaway_tool_loop():
    metrics = get_generation_metrics()
    cap_hits_before = metrics.round_cap_hits_total
    adapter = ScriptedAdapter(
        completions=[completion("", "tool_calls", [tool_call(f"call_{i}", "missing")]) for i in range(3)]
    )

    result = await generate_loop(adapter=adapter, args=_args(), max_rounds=3)

    assert result.rounds == 3
    assert result.finish_reason == "length"
    assert len(adapter.calls) == 3
    assert metrics.round_cap_hits_total == cap_hits_before + 1


@pytest.mark.asyncio
async def test_invalid_round_cap_is_rejected():
    with pytest.raises(ValueError):
        await generate_loop(adapter=ScriptedAdapter(), args=_args(), max_rounds=0)


@pytest.mark.asyncio
async def test_empty_choices_raise_generation_error():
    adapter = ScriptedAdapter(completions=[{"choices": []}])

    with pytest.raises(GenerationError, match="No response from the model"):
        await generate_loop(adapter=adapter, args=_args())


# ─── Streaming rounds ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_streaming_forwards_deltas_in_order():
    writer = StreamWriter()
    adapter = ScriptedAdapter(streams=[[delta("Hel"), delta("lo"), delta(""), delta("!", "stop")]])

    result = await generate_loop(adapter=adapter, args=_args(), writer=writer)
    writer.end()

    frames = [frame async for frame in writer.frames()]
    assert _chunks(frames) == [
        StreamChunk.chunk("Hel"),
        StreamChunk.chunk("lo"),
        StreamChunk.chunk("!"),
        StreamChunk.done(),
    ]
    assert result.message["content"] == "Hello!"


@pytest.mark.asyncio
async def test_streaming_tool_call_fragments_drive_second_round():
    connections, session = await _weather_connections()
    writer = StreamWriter()
    adapter = ScriptedAdapter(
        streams=[
            [
                delta(tool_calls=[{"index": 0, "id": "call_7", "type": "function", "function": {"name": "get_", "arguments": ""}}]),
                delta(tool_calls=[{"index": 0, "function": {"name": "weather", "arguments": '{"city"'}}]),
                delta(tool_calls=[{"index": 0, "function": {"arguments": ': "Oslo"}'}}]),
                delta(finish_reason="tool_calls"),
            ],
            [delta("Snow."), delta(finish_reason="stop")],
        ]
    )

    try:
        result = await generate_loop(adapter=adapter, args=_args(), connections=connections, writer=writer)
    finally:
        await _close(connections)

    assert result.rounds == 2
    assert session.calls == [("get_weather", {"city": "Oslo"})]
    assistant = adapter.calls[1].messages[-2]
    assert assistant["tool_calls"][0]["function"] == {"name": "get_weather", "arguments": '{"city": "Oslo"}'}


@pytest.mark.asyncio
async def test_streaming_round_closes_provider_stream_at_finish_reason():
    closed = asyncio.Event()

    class ClosingAdapter(ScriptedAdapter):
        async def stream(self, args):
            try:
                yield delta("a", "stop")
                yield delta("never forwarded")
            finally:
                closed.set()

    writer = StreamWriter()
    result = await generate_loop(adapter=ClosingAdapter(), args=_args(), writer=writer)

    assert closed.is_set()
    assert result.message["content"] == "a"


@pytest.mark.asyncio
async def test_cancellation_propagates_into_provider_stream():
    started = asyncio.Event()
    cancelled = asyncio.Event()

    class HangingAdapter(ScriptedAdapter):
        async def stream(self, args):
            yield delta("partial")
            started.set()
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            yield delta(finish_reason="stop")

    task = asyncio.create_task(generate_loop(adapter=HangingAdapter(), args=_args(), writer=StreamWriter()))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert cancelled.is_set()
