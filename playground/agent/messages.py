"""Message and turn types shared by the adapters, the MCP manager and the loop.

Conversation messages stay in OpenAI chat wire shape (plain dicts) so the same
list can be sent to either adapter unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

FinishReason = Literal["stop", "length", "content_filter", "tool_calls"]


@dataclass(slots=True)
class ToolSchema:
    name: str
    description: str
    parameters: dict[str, Any]
    strict: bool = True

    def to_function(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
                "strict": self.strict,
            },
        }


@dataclass(slots=True)
class AssistantTurn:
    message: dict[str, Any]
    finish_reason: FinishReason
    completion_tokens: int = 0

    @property
    def tool_calls(self) -> list[dict[str, Any]]:
        calls = self.message.get("tool_calls")
        return calls if isinstance(calls, list) else []


@dataclass(slots=True)
class LoopResult:
    message: dict[str, Any]
    finish_reason: FinishReason
    completion_tokens: int
    rounds: int
    messages: list[dict[str, Any]] = field(default_factory=list)


def assistant_message(content: str, tool_calls: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return message


def tool_message(tool_call_id: str, content: str) -> dict[str, Any]:
    return {"role": "tool", "tool_call_id": tool_call_id, "content": content}
