from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError

from playground.agent.loop import GenerationError
from playground.agent.providers.base import ProviderError

DEFAULT_INTERNAL_MESSAGE = "Unknown error occurred"
PASSTHROUGH_PROVIDER_STATUSES = {401, 403, 429}


@dataclass(slots=True)
class PlaygroundApiError(Exception):
    code: str
    message: str
    status_code: int
    retryable: bool = False
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


def error_response(
    *,
    code: str,
    message: str,
    trace_id: str,
    retryable: bool,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": message,
        "code": code,
        "trace_id": trace_id,
        "retryable": retryable,
    }
    if details:
        payload["details"] = details
    return payload


def error_from_exception(exc: Exception, trace_id: str) -> tuple[int, dict[str, Any]]:
    if isinstance(exc, PlaygroundApiError):
        return (
            exc.status_code,
            error_response(
                code=exc.code,
                message=exc.message,
                trace_id=trace_id,
                retryable=exc.retryable,
                details=exc.details,
            ),
        )

    if isinstance(exc, RequestValidationError):
        return (
            422,
            error_response(
                code="E_SCHEMA_INVALID",
                message="Request validation failed.",
                trace_id=trace_id,
                retryable=False,
                details={"errors": jsonable_encoder(exc.errors())},
            ),
        )

    if isinstance(exc, HTTPException):
        return (
            exc.status_code,
            error_response(
                code="E_INTERNAL" if exc.status_code >= 500 else "E_BAD_REQUEST",
                message=str(exc.detail),
                trace_id=trace_id,
                retryable=exc.status_code >= 500,
            ),
        )

    if isinstance(exc, ProviderError):
        status = exc.status_code
        if exc.code == "PROVIDER_ENDPOINT_REQUIRED":
            return (
                400,
                error_response(code=exc.code, message=exc.message, trace_id=trace_id, retryable=False),
            )
        if status in PASSTHROUGH_PROVIDER_STATUSES:
            return (
                status,
                error_response(
                    code="E_PROVIDER_AUTH" if status in {401, 403} else exc.code,
                    message=exc.message,
                    trace_id=trace_id,
                    retryable=status == 429,
                ),
            )
        return (
            504 if exc.code == "PROVIDER_TIMEOUT" else 502,
            error_response(
                code=exc.code,
                message=exc.message,
                trace_id=trace_id,
                retryable=status is None or status >= 500,
            ),
        )

    if isinstance(exc, GenerationError):
        return (
            502,
            error_response(
                code=exc.code,
                message=str(exc),
                trace_id=trace_id,
                retryable=True,
            ),
        )

    if isinstance(exc, (KeyError, ValueError, TypeError)):
        return (
            400,
            error_response(
                code="E_SCHEMA_INVALID",
                message=str(exc) or "Invalid request or payload shape.",
                trace_id=trace_id,
                retryable=False,
            ),
        )

    return (
        500,
        error_response(
            code="E_INTERNAL",
            message=str(exc) or DEFAULT_INTERNAL_MESSAGE,
            trace_id=trace_id,
            retryable=False,
        ),
    )
