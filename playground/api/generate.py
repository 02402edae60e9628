from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from playground.deps import get_generation_service
from playground.observability.redaction import redact
from playground.schemas import GenerateRequest
from playground.services.generation_service import GenerationService

router = APIRouter(prefix="/api", tags=["generate"])
logger = logging.getLogger(__name__)


@router.post("/generate")
async def generate(body: GenerateRequest, service: GenerationService = Depends(get_generation_service)):
    logger.debug(
        "generate_request",
        extra={
            "model": body.model.id,
            "connections": len(body.enabled_mcps or []),
            "outcome": redact({"provider": body.provider, "access_token": body.access_token}),
        },
    )
    if not body.streaming:
        return await service.generate(body)

    writer, task = service.start_stream(body)

    async def event_generator():
        try:
            async for frame in writer.frames():
                yield frame
        finally:
            # Client gone or stream finished; either way the generation must not outlive it.
            if not task.done():
                task.cancel()

    return writer.create_response(event_generator())
