"""
loop.py: tool-augmented generation loop

One assistant turn per round. A ``tool_calls`` finish reason runs the
requested tools through the MCP connections, appends their results and starts
another round; any other finish reason ends the loop.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from typing import Any, Iterable

from playground.agent.deltas import ToolCallAccumulator
from playground.agent.mcp import MCPServerConnection, execute_mcp_tool
from playground.agent.messages import AssistantTurn, FinishReason, LoopResult, assistant_message
from playground.agent.providers.base import GenerationArgs, ProviderAdapter
from playground.config import DEFAULT_MAX_TOOL_ROUNDS
from playground.observability.metrics import get_generation_metrics
from playground.sse.writer import StreamWriter

logger = logging.getLogger(__name__)

_FINISH_REASON_ALIASES: dict[str, FinishReason] = {
    "stop": "stop",
    "eos_token": "stop",
    "end_turn": "stop",
    "stop_sequence": "stop",
    "length": "length",
    "max_tokens": "length",
    "model_length": "length",
    "content_filter": "content_filter",
    "safety": "content_filter",
    "tool_calls": "tool_calls",
    "tool_use": "tool_calls",
    "function_call": "tool_calls",
}


class GenerationError(RuntimeError):
    def __init__(self, message: str, code: str = "GENERATION_EMPTY_RESPONSE") -> None:
        super().__init__(message)
        self.code = code


def normalize_finish_reason(raw: Any) -> FinishReason:
    """Unknown or missing reasons are treated as ``stop`` so the loop always terminates."""
    if not isinstance(raw, str):
        return "stop"
    return _FINISH_REASON_ALIASES.get(raw.strip().lower(), "stop")


async def generate_loop(
    *,
    adapter: ProviderAdapter,
    args: GenerationArgs,
    connections: Iterable[MCPServerConnection] = (),
    writer: StreamWriter | None = None,
    max_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
) -> LoopResult:
    """
    Run rounds until the model returns a terminal finish reason.

    Args:
        adapter: Provider adapter chosen for this request.
        args: Generation arguments; ``args.messages`` is copied, not mutated.
        connections: Connected MCP servers used to execute tool calls.
        writer: When given, rounds stream and each content delta is forwarded.
        max_rounds: Safety cap on rounds.

    Returns:
        LoopResult with the last assistant message and the full message list.
    """
    if max_rounds < 1:
        raise ValueError("max_rounds must be at least 1")
    connections = list(connections)
    messages = list(args.messages)
    metrics = get_generation_metrics()
    completion_tokens = 0
    turn: AssistantTurn | None = None

    for round_number in range(1, max_rounds + 1):
        started = time.monotonic()
        round_args = args.with_messages(messages)
        if writer is not None:
            turn = await _stream_turn(adapter, round_args, writer)
        else:
            turn = await _generate_turn(adapter, round_args)

        metrics.rounds_total += 1
        completion_tokens += turn.completion_tokens
        messages.append(turn.message)
        logger.info(
            "generation_round",
            extra={
                "model": args.model,
                "round": round_number,
                "finish_reason": turn.finish_reason,
                "tools": len(turn.tool_calls),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )

        if turn.finish_reason != "tool_calls" or not turn.tool_calls:
            return LoopResult(
                message=turn.message,
                finish_reason=turn.finish_reason if turn.finish_reason != "tool_calls" else "stop",
                completion_tokens=completion_tokens,
                rounds=round_number,
                messages=messages,
            )

        # Results keep the order the model requested them in.
        results = await asyncio.gather(*(execute_mcp_tool(connections, call) for call in turn.tool_calls))
        messages.extend(results)

    metrics.round_cap_hits_total += 1
    logger.warning("generation_round_cap_hit", extra={"model": args.model, "round": max_rounds})
    return LoopResult(
        message=turn.message if turn is not None else assistant_message(""),
        finish_reason="length",
        completion_tokens=completion_tokens,
        rounds=max_rounds,
        messages=messages,
    )


async def _generate_turn(adapter: ProviderAdapter, args: GenerationArgs) -> AssistantTurn:
    completion = await adapter.generate(args)
    choices = completion.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise GenerationError("No response from the model")

    choice = choices[0]
    raw_message = choice.get("message")
    raw_message = raw_message if isinstance(raw_message, dict) else {}
    tool_calls = raw_message.get("tool_calls")
    message = assistant_message(
        _content_text(raw_message.get("content")),
        tool_calls if isinstance(tool_calls, list) else None,
    )
    return AssistantTurn(
        message=message,
        finish_reason=normalize_finish_reason(choice.get("finish_reason")),
        completion_tokens=_completion_tokens(completion.get("usage")),
    )


async def _stream_turn(adapter: ProviderAdapter, args: GenerationArgs, writer: StreamWriter) -> AssistantTurn:
    content_parts: list[str] = []
    tool_calls = ToolCallAccumulator()
    finish_reason: Any = None
    completion_tokens = 0

    async with aclosing(adapter.stream(args)) as stream:
        async for chunk in stream:
            usage_tokens = _completion_tokens(chunk.get("usage"))
            if usage_tokens:
                completion_tokens = usage_tokens

            choices = chunk.get("choices")
            if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
                continue
            choice = choices[0]
            delta = choice.get("delta")
            if isinstance(delta, dict):
                content = delta.get("content")
                if isinstance(content, str) and content:
                    content_parts.append(content)
                    writer.write_chunk(content)
                tool_calls.add(delta.get("tool_calls"))

            if choice.get("finish_reason"):
                finish_reason = choice["finish_reason"]
                break

    return AssistantTurn(
        message=assistant_message("".join(content_parts), tool_calls.tool_calls()),
        finish_reason=normalize_finish_reason(finish_reason),
        completion_tokens=completion_tokens,
    )


def _content_text(raw_content: Any) -> str:
    if isinstance(raw_content, str):
        return raw_content
    if isinstance(raw_content, list):
        return "".join(
            str(item.get("text") or "")
            for item in raw_content
            if isinstance(item, dict) and item.get("type") == "text"
        )
    return ""


def _completion_tokens(raw_usage: Any) -> int:
    usage = raw_usage if isinstance(raw_usage, dict) else {}
    try:
        parsed = int(usage.get("completion_tokens") or 0)
    except (TypeError, ValueError):
        return 0
    return max(parsed, 0)
