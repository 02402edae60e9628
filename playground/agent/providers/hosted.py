"""Hugging Face hosted multi-provider inference adapter.

The router speaks the OpenAI chat completions protocol. The provider routing
hint is expressed as a ``model:provider`` suffix; ``auto`` (or no hint) lets
the router pick.
"""
from __future__ import annotations

import httpx

from playground.agent.providers.base import GenerationArgs
from playground.agent.providers.custom import OpenAIChatAdapter


class HostedInferenceAdapter(OpenAIChatAdapter):
    label = "inference"

    def __init__(
        self,
        access_token: str,
        base_url: str,
        *,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(access_token, base_url, timeout_seconds=timeout_seconds, transport=transport)

    def model_id(self, args: GenerationArgs) -> str:
        return routed_model_id(args.model, args.provider)


def routed_model_id(model: str, provider: str | None) -> str:
    hint = (provider or "").strip()
    if not hint or hint == "auto" or ":" in model:
        return model
    return f"{model}:{hint}"
