from __future__ import annotations

import pytest
from fastapi import HTTPException

from playground.agent.loop import GenerationError
from playground.agent.providers.base import ProviderError
from playground.errors import PlaygroundApiError, error_from_exception


def _status_and_code(exc: Exception) -> tuple[int, str]:
    status_code, payload = error_from_exception(exc, "tr_test")
    assert payload["trace_id"] == "tr_test"
    assert isinstance(payload["error"], str)
    assert isinstance(payload["retryable"], bool)
    return status_code, payload["code"]


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (ProviderError("PROVIDER_HTTP_ERROR", "bad token", status_code=401), (401, "E_PROVIDER_AUTH")),
        (ProviderError("PROVIDER_HTTP_ERROR", "forbidden", status_code=403), (403, "E_PROVIDER_AUTH")),
        (ProviderError("PROVIDER_HTTP_ERROR", "slow down", status_code=429), (429, "PROVIDER_HTTP_ERROR")),
        (ProviderError("PROVIDER_HTTP_ERROR", "upstream 500", status_code=500), (502, "PROVIDER_HTTP_ERROR")),
        (ProviderError("PROVIDER_HTTP_ERROR", "not found", status_code=404), (502, "PROVIDER_HTTP_ERROR")),
        (ProviderError("PROVIDER_NETWORK_ERROR", "refused"), (502, "PROVIDER_NETWORK_ERROR")),
        (ProviderError("PROVIDER_TIMEOUT", "timed out"), (504, "PROVIDER_TIMEOUT")),
        (ProviderError("PROVIDER_ENDPOINT_REQUIRED", "endpointUrl is required", status_code=400), (400, "PROVIDER_ENDPOINT_REQUIRED")),
        (GenerationError("No response from the model"), (502, "GENERATION_EMPTY_RESPONSE")),
        (PlaygroundApiError(code="E_X", message="nope", status_code=409), (409, "E_X")),
        (HTTPException(status_code=404, detail="missing"), (404, "E_BAD_REQUEST")),
        (ValueError("bad shape"), (400, "E_SCHEMA_INVALID")),
        (RuntimeError("kaboom"), (500, "E_INTERNAL")),
        (TimeoutError("slow"), (500, "E_INTERNAL")),
    ],
)
def test_error_from_exception_mapping(exc, expected):
    assert _status_and_code(exc) == expected


def test_error_body_uses_flat_error_message():
    status_code, payload = error_from_exception(
        ProviderError("PROVIDER_HTTP_ERROR", "Invalid credentials", status_code=401), "tr_1"
    )

    assert status_code == 401
    assert payload == {
        "error": "Invalid credentials",
        "code": "E_PROVIDER_AUTH",
        "trace_id": "tr_1",
        "retryable": False,
    }


def test_internal_error_without_message_uses_default():
    _, payload = error_from_exception(RuntimeError(), "tr_1")
    assert payload["error"] == "Unknown error occurred"
