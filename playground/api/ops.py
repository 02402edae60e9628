from __future__ import annotations

from fastapi import APIRouter

from playground.observability.metrics import get_generation_metrics
from playground.version import get_playground_version

router = APIRouter(prefix="/api", tags=["ops"])


@router.get("/health")
async def health():
    return {"ok": True, "version": get_playground_version()}


@router.get("/metrics")
async def metrics():
    return get_generation_metrics().snapshot()
