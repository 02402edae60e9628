"""OpenAI-compatible chat adapters.

``OpenAIChatAdapter`` drives any OpenAI-compatible chat completions endpoint
through ``AsyncOpenAI``; ``CustomEndpointAdapter`` is the variant for
user-registered models.
"""
from __future__ import annotations

from typing import Any, AsyncIterator

import httpx
from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, AsyncOpenAI

from playground.agent.providers.base import SUPPORTED_PARAM_KEYS, GenerationArgs, ProviderAdapter, ProviderError

PLACEHOLDER_API_KEY = "EMPTY"


class OpenAIChatAdapter(ProviderAdapter):
    label = "chat completion"

    def __init__(
        self,
        api_key: str | None,
        base_url: str,
        *,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        http_client = httpx.AsyncClient(transport=transport, timeout=timeout_seconds) if transport else None
        self.client = AsyncOpenAI(
            api_key=api_key or PLACEHOLDER_API_KEY,
            base_url=base_url.strip().rstrip("/"),
            timeout=timeout_seconds,
            max_retries=0,
            http_client=http_client,
        )

    def model_id(self, args: GenerationArgs) -> str:
        return args.model

    async def stream(self, args: GenerationArgs) -> AsyncIterator[dict[str, Any]]:
        try:
            response = await self.client.chat.completions.create(
                **_build_kwargs(args, self.model_id(args)), stream=True
            )
        except APIError as exc:
            raise _wrap_openai_error(exc, self.label) from exc

        try:
            async for chunk in response:
                yield chunk.model_dump(exclude_none=True)
        except APIError as exc:
            raise _wrap_openai_error(exc, self.label) from exc
        except ValueError as exc:
            raise ProviderError("PROVIDER_INVALID_RESPONSE", f"{self.label} stream frame is not valid JSON") from exc
        finally:
            await response.close()

    async def generate(self, args: GenerationArgs) -> dict[str, Any]:
        try:
            completion = await self.client.chat.completions.create(**_build_kwargs(args, self.model_id(args)))
        except APIError as exc:
            raise _wrap_openai_error(exc, self.label) from exc
        return completion.model_dump(exclude_none=True)

    async def aclose(self) -> None:
        await self.client.close()


class CustomEndpointAdapter(OpenAIChatAdapter):
    label = "custom endpoint"

    def __init__(
        self,
        api_key: str | None,
        base_url: str,
        *,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url or not base_url.strip():
            raise ProviderError("PROVIDER_ENDPOINT_REQUIRED", "endpointUrl is required for custom models", status_code=400)
        super().__init__(api_key, base_url, timeout_seconds=timeout_seconds, transport=transport)


def _build_kwargs(args: GenerationArgs, model: str) -> dict[str, Any]:
    """Known sampling keys go through as arguments, anything else rides in extra_body."""
    kwargs: dict[str, Any] = {"model": model, "messages": args.messages}
    extra_body: dict[str, Any] = {}
    for key, value in args.sampling_params().items():
        if key in SUPPORTED_PARAM_KEYS:
            kwargs[key] = value
        else:
            extra_body[key] = value
    if args.tools:
        kwargs["tools"] = args.tools
    if args.response_format is not None:
        kwargs["response_format"] = args.response_format
    if extra_body:
        kwargs["extra_body"] = extra_body
    return kwargs


def _wrap_openai_error(exc: APIError, label: str) -> ProviderError:
    if isinstance(exc, APIStatusError):
        return ProviderError(
            "PROVIDER_HTTP_ERROR",
            _status_error_message(exc, label),
            status_code=exc.status_code,
            details={"body": exc.body} if exc.body is not None else None,
        )
    if isinstance(exc, APITimeoutError):
        return ProviderError("PROVIDER_TIMEOUT", f"{label} request timed out")
    if isinstance(exc, APIConnectionError):
        return ProviderError("PROVIDER_NETWORK_ERROR", f"{label} request failed: {exc}")
    # Error objects sent inside an open stream.
    return ProviderError("PROVIDER_STREAM_ERROR", exc.message or f"{label} stream failed")


def _status_error_message(exc: APIStatusError, label: str) -> str:
    body = exc.body
    if isinstance(body, str) and body:
        return body
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
    return exc.message or f"{label} request failed"
