"""Inbound request models for the generate endpoint."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ModelRef(_WireModel):
    id: str = Field(min_length=1)
    is_custom: bool = Field(default=False, alias="isCustom")
    access_token: str | None = Field(default=None, alias="accessToken")
    endpoint_url: str | None = Field(default=None, alias="endpointUrl")


class MCPServerConfig(_WireModel):
    id: str
    name: str
    url: str
    protocol: Literal["sse", "http"] = "http"
    headers: dict[str, str] | None = None


class GenerateRequest(_WireModel):
    model: ModelRef
    messages: list[dict[str, Any]]
    config: dict[str, Any] | None = None
    provider: str | None = None
    streaming: bool = False
    response_format: Any = None
    access_token: str = Field(default="", alias="accessToken")
    enabled_mcps: list[MCPServerConfig] | None = Field(default=None, alias="enabledMCPs")
