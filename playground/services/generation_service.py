from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from playground.agent.loop import generate_loop
from playground.agent.mcp import SessionFactory, mcp_connections, merge_tool_schemas, open_mcp_session
from playground.agent.messages import LoopResult
from playground.agent.provider_router import create_adapter
from playground.agent.providers.base import GenerationArgs
from playground.config import Settings
from playground.observability.metrics import get_generation_metrics
from playground.schemas import GenerateRequest
from playground.sse.writer import StreamWriter

logger = logging.getLogger(__name__)


class GenerationService:
    """Runs one generate request: adapter, MCP connections, loop, teardown."""

    def __init__(
        self,
        settings: Settings,
        *,
        session_factory: SessionFactory = open_mcp_session,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._session_factory = session_factory
        self._transport = transport

    async def generate(self, body: GenerateRequest) -> dict[str, Any]:
        metrics = get_generation_metrics()
        metrics.generations_total += 1
        try:
            result = await self._run(body, writer=None)
        except Exception:
            metrics.generations_failed_total += 1
            raise
        return {"message": result.message, "completion_tokens": result.completion_tokens}

    async def stream(self, body: GenerateRequest, writer: StreamWriter) -> None:
        """Feed ``writer`` until done; failures end the stream with an error frame."""
        metrics = get_generation_metrics()
        metrics.generations_total += 1
        metrics.generations_streaming_total += 1
        try:
            await self._run(body, writer=writer)
        except asyncio.CancelledError:
            logger.info("generation_cancelled", extra={"model": body.model.id})
            writer.abort()
            raise
        except Exception as exc:  # noqa: BLE001
            metrics.generations_failed_total += 1
            logger.warning(
                "generation_stream_failed",
                extra={"model": body.model.id, "outcome": f"{exc.__class__.__name__}: {exc}"},
            )
            writer.error(exc)
            return
        writer.end()

    def start_stream(self, body: GenerateRequest) -> tuple[StreamWriter, asyncio.Task[None]]:
        writer = StreamWriter()
        task = asyncio.create_task(self.stream(body, writer), name=f"generate:{body.model.id}")
        return writer, task

    async def _run(self, body: GenerateRequest, *, writer: StreamWriter | None) -> LoopResult:
        started = time.monotonic()
        adapter = create_adapter(body, self.settings, transport=self._transport)
        try:
            async with mcp_connections(
                body.enabled_mcps or [],
                session_factory=self._session_factory,
                timeout_seconds=self.settings.mcp_connect_timeout_seconds,
            ) as connections:
                args = GenerationArgs(
                    model=body.model.id,
                    messages=list(body.messages),
                    provider=body.provider,
                    config=dict(body.config or {}),
                    tools=merge_tool_schemas(connections),
                    response_format=body.response_format,
                )
                result = await generate_loop(
                    adapter=adapter,
                    args=args,
                    connections=connections,
                    writer=writer,
                    max_rounds=self.settings.max_tool_rounds,
                )
        finally:
            await adapter.aclose()
        logger.info(
            "generation_completed",
            extra={
                "model": body.model.id,
                "round": result.rounds,
                "finish_reason": result.finish_reason,
                "connections": len(body.enabled_mcps or []),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return result
