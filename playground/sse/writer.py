from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterable, AsyncIterator, Callable, TypeVar

from sse_starlette.sse import EventSourceResponse

from playground.sse.chunks import FRAME_SEPARATOR, StreamChunk, encode_frame

logger = logging.getLogger(__name__)

T = TypeVar("T")

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class StreamWriter:
    """Serializes StreamChunks as SSE frames onto an in-memory byte queue.

    Writes after ``end()`` or ``error()`` are dropped silently: a producer racing
    with a cancelled request must never raise from here.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, chunk: StreamChunk) -> None:
        if self._closed:
            return
        self._queue.put_nowait(encode_frame(chunk))

    def write_chunk(self, content: str) -> None:
        self.write(StreamChunk.chunk(content))

    def write_error(self, message: str) -> None:
        self.write(StreamChunk.failure(message))

    def end(self) -> None:
        if self._closed:
            return
        self.write(StreamChunk.done())
        self._close()

    def error(self, exc: BaseException | str) -> None:
        if self._closed:
            return
        message = exc if isinstance(exc, str) else (str(exc) or exc.__class__.__name__)
        self.write_error(message)
        self._close()

    def abort(self) -> None:
        """Close without a terminal frame (consumer already gone)."""
        self._close()

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[bytes]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame

    def create_response(self, content: AsyncIterable[bytes] | None = None) -> EventSourceResponse:
        return EventSourceResponse(
            content if content is not None else self.frames(),
            headers=dict(STREAM_HEADERS),
            sep=FRAME_SEPARATOR,
        )


def stream_from_async_iterable(
    iterable: AsyncIterable[T],
    transform: Callable[[T], StreamChunk],
) -> tuple[StreamWriter, asyncio.Task[None]]:
    """Pump ``iterable`` through ``transform`` into a new writer on a background task."""
    writer = StreamWriter()

    async def pump() -> None:
        try:
            async for item in iterable:
                writer.write(transform(item))
            writer.end()
        except asyncio.CancelledError:
            writer.abort()
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("stream_pump_failed", extra={"outcome": exc.__class__.__name__})
            writer.error(exc)

    return writer, asyncio.create_task(pump())
