from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Any, Awaitable, Callable

import httpx

from playground.sse.reader import StreamReader, StreamRequestError
from playground.trace import TRACE_HEADER, get_current_trace_id

logger = logging.getLogger(__name__)

TOKEN_ERROR_MESSAGE = "Failed to connect to inference providers. Are you logged in?"
GENERATE_PATH = "/api/generate"

TokenRefresher = Callable[[], Awaitable[str | None]]


class GenerateClientError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GenerateClient:
    """Caller of ``POST /api/generate`` that re-authenticates once on a 401."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        refresh_token: TokenRefresher,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 300.0,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.access_token = access_token
        self._refresh_token = refresh_token
        self._transport = transport
        self.timeout_seconds = timeout_seconds

    async def stream(self, body: dict[str, Any], on_chunk: Callable[[str], None]) -> str:
        """Stream a generation; ``on_chunk`` receives the accumulated text after every chunk."""
        try:
            return await self._stream_once(body, on_chunk)
        except (StreamRequestError, GenerateClientError) as exc:
            if not _is_unauthorized(exc):
                raise
            await self._reauthenticate()

        try:
            return await self._stream_once(body, on_chunk)
        except (StreamRequestError, GenerateClientError) as exc:
            if _is_unauthorized(exc):
                raise GenerateClientError(TOKEN_ERROR_MESSAGE, status_code=401) from exc
            raise

    async def generate(self, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._post(body, streaming=False)
        if response.status_code == 401:
            await self._reauthenticate()
            response = await self._post(body, streaming=False)
            if response.status_code == 401:
                raise GenerateClientError(TOKEN_ERROR_MESSAGE, status_code=401)
        if not response.is_success:
            raise GenerateClientError(
                _response_error(response) or "Failed to generate response",
                status_code=response.status_code,
            )
        return response.json()

    async def _stream_once(self, body: dict[str, Any], on_chunk: Callable[[str], None]) -> str:
        out = ""
        async with self._client() as client:
            reader = await StreamReader.from_fetch(
                self._url(),
                client=client,
                json=self._payload(body, streaming=True),
                headers=self._headers(),
            )
            async with aclosing(reader.read()) as chunks:
                async for chunk in chunks:
                    if chunk.type == "chunk" and chunk.content:
                        out += chunk.content
                        on_chunk(out)
                    elif chunk.type == "error":
                        raise GenerateClientError(chunk.error or "Stream error")
        return out

    async def _post(self, body: dict[str, Any], *, streaming: bool) -> httpx.Response:
        async with self._client() as client:
            return await client.post(
                self._url(),
                json=self._payload(body, streaming=streaming),
                headers=self._headers(),
            )

    async def _reauthenticate(self) -> None:
        logger.info("generate_client_reauthenticating")
        token = await self._refresh_token()
        if not token:
            raise GenerateClientError(TOKEN_ERROR_MESSAGE, status_code=401)
        self.access_token = token

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    def _url(self) -> str:
        return f"{self.base_url}{GENERATE_PATH}"

    def _payload(self, body: dict[str, Any], *, streaming: bool) -> dict[str, Any]:
        payload = dict(body)
        payload["streaming"] = streaming
        payload["accessToken"] = self.access_token
        return payload

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", TRACE_HEADER: get_current_trace_id()}


def _is_unauthorized(exc: Exception) -> bool:
    status_code = getattr(exc, "status_code", None)
    if status_code == 401:
        return True
    return "status=401" in str(exc)


def _response_error(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return None
