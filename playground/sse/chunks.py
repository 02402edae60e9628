"""Wire messages exchanged over the generation SSE channel.

Every frame is ``data: <json>\\n\\n`` where the JSON object is one of::

    {"type": "chunk", "content": "..."}
    {"type": "done"}
    {"type": "error", "error": "..."}

Exactly one ``done`` or ``error`` frame terminates a stream.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

from sse_starlette.sse import ServerSentEvent

ChunkType = Literal["chunk", "done", "error"]
CHUNK_TYPES: frozenset[str] = frozenset({"chunk", "done", "error"})
DATA_PREFIX = "data: "
FRAME_SEPARATOR = "\n"


@dataclass(slots=True, frozen=True)
class StreamChunk:
    type: ChunkType
    content: str | None = None
    error: str | None = None

    @classmethod
    def chunk(cls, content: str) -> StreamChunk:
        return cls(type="chunk", content=content)

    @classmethod
    def done(cls) -> StreamChunk:
        return cls(type="done")

    @classmethod
    def failure(cls, message: str) -> StreamChunk:
        return cls(type="error", error=message)

    @property
    def is_terminal(self) -> bool:
        return self.type in {"done", "error"}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.content is not None:
            payload["content"] = self.content
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> StreamChunk | None:
        if not isinstance(payload, dict):
            return None
        chunk_type = payload.get("type")
        if chunk_type not in CHUNK_TYPES:
            return None
        content = payload.get("content")
        error = payload.get("error")
        return cls(
            type=chunk_type,
            content=content if isinstance(content, str) else None,
            error=error if isinstance(error, str) else None,
        )


def encode_frame(chunk: StreamChunk) -> bytes:
    data = json.dumps(chunk.to_dict(), ensure_ascii=False)
    return ServerSentEvent(data=data, sep=FRAME_SEPARATOR).encode()


def parse_frame_line(line: str) -> StreamChunk | None:
    """Parse one SSE line; returns None for anything that is not a chunk frame."""
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None
    data = line[len(DATA_PREFIX):].strip()
    if not data:
        return None
    try:
        payload = json.loads(data)
    except ValueError:
        return None
    return StreamChunk.from_dict(payload)
