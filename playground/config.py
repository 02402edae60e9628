from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_HF_ROUTER_URL = "https://router.huggingface.co/v1"
DEFAULT_HF_API_URL = "https://huggingface.co/api"
DEFAULT_PROVIDER_TIMEOUT_MS = 60_000
DEFAULT_MCP_CONNECT_TIMEOUT_MS = 15_000
DEFAULT_MAX_TOOL_ROUNDS = 10
DEFAULT_CATALOG_TTL_SECONDS = 60 * 60


@dataclass(slots=True)
class Settings:
    host: str
    port: int
    hf_router_url: str
    hf_api_url: str
    provider_timeout_ms: int
    mcp_connect_timeout_ms: int
    max_tool_rounds: int
    catalog_ttl_seconds: int
    debug_mcp: bool

    @property
    def provider_timeout_seconds(self) -> float:
        return self.provider_timeout_ms / 1000.0

    @property
    def mcp_connect_timeout_seconds(self) -> float:
        return self.mcp_connect_timeout_ms / 1000.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str | None, default: int, *, minimum: int, maximum: int) -> int:
    try:
        parsed = int(value) if value is not None else default
    except (TypeError, ValueError):
        parsed = default
    return min(max(parsed, minimum), maximum)


def load_settings() -> Settings:
    return Settings(
        host=os.getenv("PLAYGROUND_HOST", "127.0.0.1"),
        port=_parse_int(os.getenv("PLAYGROUND_PORT"), 5173, minimum=1, maximum=65_535),
        hf_router_url=os.getenv("PLAYGROUND_HF_ROUTER_URL", DEFAULT_HF_ROUTER_URL).strip().rstrip("/"),
        hf_api_url=os.getenv("PLAYGROUND_HF_API_URL", DEFAULT_HF_API_URL).strip().rstrip("/"),
        provider_timeout_ms=_parse_int(
            os.getenv("PLAYGROUND_PROVIDER_TIMEOUT_MS"),
            DEFAULT_PROVIDER_TIMEOUT_MS,
            minimum=1_000,
            maximum=300_000,
        ),
        mcp_connect_timeout_ms=_parse_int(
            os.getenv("PLAYGROUND_MCP_CONNECT_TIMEOUT_MS"),
            DEFAULT_MCP_CONNECT_TIMEOUT_MS,
            minimum=1_000,
            maximum=120_000,
        ),
        max_tool_rounds=_parse_int(
            os.getenv("PLAYGROUND_MAX_TOOL_ROUNDS"),
            DEFAULT_MAX_TOOL_ROUNDS,
            minimum=1,
            maximum=100,
        ),
        catalog_ttl_seconds=_parse_int(
            os.getenv("PLAYGROUND_CATALOG_TTL_SECONDS"),
            DEFAULT_CATALOG_TTL_SECONDS,
            minimum=0,
            maximum=7 * 24 * 60 * 60,
        ),
        debug_mcp=_parse_bool(os.getenv("PLAYGROUND_DEBUG_MCP"), False),
    )
