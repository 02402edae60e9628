from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from playground.deps import get_catalog_service
from playground.errors import PlaygroundApiError
from playground.services.model_catalog_service import SUPPORTED_PIPELINE_TAGS, ModelCatalogService

router = APIRouter(prefix="/api", tags=["models"])


@router.get("/models")
async def list_models(
    pipeline_tag: list[str] | None = Query(default=None),
    service: ModelCatalogService = Depends(get_catalog_service),
):
    tags = pipeline_tag or list(SUPPORTED_PIPELINE_TAGS)
    try:
        models = await service.list_models(tags)
    except ValueError as exc:
        raise PlaygroundApiError(
            code="E_UNSUPPORTED_PIPELINE_TAG",
            message=str(exc),
            status_code=400,
            details={"supported": list(SUPPORTED_PIPELINE_TAGS)},
        ) from exc
    return {"models": models}


@router.delete("/models/cache")
async def invalidate_models_cache(
    pipeline_tag: str | None = None,
    service: ModelCatalogService = Depends(get_catalog_service),
):
    service.cache.invalidate(pipeline_tag)
    return {"ok": True}
