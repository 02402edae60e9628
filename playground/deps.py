from __future__ import annotations

from playground.services.generation_service import GenerationService
from playground.services.model_catalog_service import ModelCatalogService

_generation_service: GenerationService | None = None
_catalog_service: ModelCatalogService | None = None


def set_dependencies(generation_service: GenerationService, catalog_service: ModelCatalogService) -> None:
    global _generation_service, _catalog_service
    _generation_service = generation_service
    _catalog_service = catalog_service


def get_generation_service() -> GenerationService:
    if _generation_service is None:
        raise RuntimeError("GenerationService not initialized")
    return _generation_service


def get_catalog_service() -> ModelCatalogService:
    if _catalog_service is None:
        raise RuntimeError("ModelCatalogService not initialized")
    return _catalog_service
