"""Accumulation of streamed tool-call fragments.

Streamed tool calls arrive as sparse fragments addressed by ``index``. The
first fragment for an index usually carries ``id`` and the start of
``function.name``; later ones carry more of ``function.arguments``. ``name``
and ``arguments`` are appended, never replaced, so partial JSON argument
strings reassemble byte for byte.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class PendingToolCall:
    index: int
    id: str = ""
    type: str = "function"
    name: str = ""
    arguments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id or f"call_{self.index}",
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ToolCallAccumulator:
    def __init__(self) -> None:
        self._calls: dict[int, PendingToolCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def get(self, index: int) -> PendingToolCall | None:
        return self._calls.get(index)

    def add(self, fragments: Any) -> None:
        if not isinstance(fragments, list):
            return
        for position, fragment in enumerate(fragments):
            if not isinstance(fragment, dict):
                continue
            index = fragment.get("index")
            if not isinstance(index, int):
                index = position
            call = self._calls.get(index)
            if call is None:
                call = self._calls[index] = PendingToolCall(index=index)

            call_id = fragment.get("id")
            if isinstance(call_id, str) and call_id:
                call.id = call_id
            call_type = fragment.get("type")
            if isinstance(call_type, str) and call_type:
                call.type = call_type

            function = fragment.get("function")
            if not isinstance(function, dict):
                continue
            name = function.get("name")
            if isinstance(name, str):
                call.name += name
            arguments = function.get("arguments")
            if isinstance(arguments, str):
                call.arguments += arguments

    def tool_calls(self) -> list[dict[str, Any]]:
        return [
            self._calls[index].to_dict()
            for index in sorted(self._calls)
            if self._calls[index].name
        ]
