"""Provider base types: GenerationArgs / ProviderAdapter / ProviderError.

Both adapter variants normalize upstream output to OpenAI-shaped dicts:
stream chunks carry ``choices[0].delta`` and completions carry
``choices[0].message``; either may carry ``usage``.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator

# Sampling keys understood natively by OpenAI-compatible chat completion APIs.
SUPPORTED_PARAM_KEYS = {
    "temperature",
    "top_p",
    "max_tokens",
    "max_completion_tokens",
    "presence_penalty",
    "frequency_penalty",
    "stop",
    "seed",
    "n",
    "logprobs",
    "top_logprobs",
    "tool_choice",
    "parallel_tool_calls",
    "stream_options",
    "user",
}
RESERVED_PARAM_KEYS = {"model", "messages", "tools", "response_format", "stream", "provider"}


class ProviderError(RuntimeError):
    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (status={self.status_code})"
        return self.message


@dataclass(slots=True)
class GenerationArgs:
    model: str
    messages: list[dict[str, Any]]
    provider: str | None = None
    config: dict[str, Any] = field(default_factory=dict)
    tools: list[dict[str, Any]] = field(default_factory=list)
    response_format: Any = None

    def with_messages(self, messages: list[dict[str, Any]]) -> GenerationArgs:
        return replace(self, messages=list(messages))

    def sampling_params(self) -> dict[str, Any]:
        return {k: v for k, v in self.config.items() if k not in RESERVED_PARAM_KEYS and v is not None}


class ProviderAdapter(ABC):
    @abstractmethod
    def stream(self, args: GenerationArgs) -> AsyncIterator[dict[str, Any]]: ...

    @abstractmethod
    async def generate(self, args: GenerationArgs) -> dict[str, Any]: ...

    async def aclose(self) -> None:
        """Release any client the adapter holds. Safe to call more than once."""
        return None
