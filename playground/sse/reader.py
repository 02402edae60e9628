from __future__ import annotations

from typing import Any, AsyncIterator

import httpx

from playground.sse.chunks import StreamChunk, parse_frame_line


class StreamError(RuntimeError):
    pass


class StreamRequestError(StreamError):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamReader:
    """Client-side counterpart of StreamWriter over an httpx streaming response."""

    def __init__(self, response: httpx.Response) -> None:
        if not _has_body(response):
            raise StreamError("Response has no body")
        self._response = response
        self._buffer = ""
        self._started = False

    async def read(self) -> AsyncIterator[StreamChunk]:
        if self._started:
            raise StreamError("Stream has already been read")
        self._started = True

        try:
            async for text in self._response.aiter_text():
                self._buffer += text
                *lines, self._buffer = self._buffer.split("\n")
                for line in lines:
                    chunk = parse_frame_line(line)
                    if chunk is None:
                        continue
                    yield chunk
                    if chunk.type == "done":
                        return
        finally:
            await self._response.aclose()

    @classmethod
    async def from_fetch(
        cls,
        url: str,
        *,
        client: httpx.AsyncClient,
        method: str = "POST",
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> StreamReader:
        request = client.build_request(method, url, json=json, headers=headers)
        response = await client.send(request, stream=True)
        if response.is_success:
            return cls(response)

        try:
            await response.aread()
        finally:
            await response.aclose()
        raise StreamRequestError(_error_message(response), response.status_code)


def _has_body(response: httpx.Response) -> bool:
    try:
        return bool(response.content)
    except httpx.ResponseNotRead:
        return not response.is_stream_consumed


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return "Request failed"
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return "Request failed"
