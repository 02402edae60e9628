from __future__ import annotations

import httpx

from playground.agent.providers.base import ProviderAdapter
from playground.agent.providers.custom import CustomEndpointAdapter
from playground.agent.providers.hosted import HostedInferenceAdapter
from playground.config import Settings
from playground.schemas import GenerateRequest


def create_adapter(
    body: GenerateRequest,
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderAdapter:
    """Pick the adapter variant once per request from the model's custom flag."""
    model = body.model
    if model.is_custom:
        return CustomEndpointAdapter(
            api_key=model.access_token,
            base_url=model.endpoint_url or "",
            timeout_seconds=settings.provider_timeout_seconds,
            transport=transport,
        )
    return HostedInferenceAdapter(
        access_token=body.access_token,
        base_url=settings.hf_router_url,
        timeout_seconds=settings.provider_timeout_seconds,
        transport=transport,
    )
