from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

import httpx

logger = logging.getLogger(__name__)

SUPPORTED_PIPELINE_TAGS: tuple[str, ...] = ("text-generation", "image-text-to-text")
CONVERSATIONAL_PIPELINE_TAGS: set[str] = {"text-generation", "image-text-to-text"}
EXPAND_FIELDS: tuple[str, ...] = (
    "inferenceProviderMapping",
    "config",
    "library_name",
    "pipeline_tag",
    "tags",
    "mask_token",
    "trendingScore",
)
CATALOG_PAGE_LIMIT = 100
CATALOG_REQUEST_TIMEOUT_SECONDS = 10.0


def is_supported_pipeline_tag(tag: str) -> bool:
    return tag in SUPPORTED_PIPELINE_TAGS


@dataclass(slots=True)
class CatalogEntry:
    fetched_at: float
    ok: bool
    data: list[dict[str, Any]] = field(default_factory=list)


class CatalogCache:
    """Process-scoped cache of catalog pages keyed by pipeline tag.

    An entry is served only while it is fresh, was fetched successfully and
    holds at least one model. Failed fetches are recorded so callers can see
    them but are never served.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CatalogEntry] = {}

    def get(self, tag: str) -> list[dict[str, Any]] | None:
        entry = self._entries.get(tag)
        if entry is None or not entry.ok or not entry.data:
            return None
        if self._clock() - entry.fetched_at >= self.ttl_seconds:
            return None
        return entry.data

    def entry(self, tag: str) -> CatalogEntry | None:
        return self._entries.get(tag)

    def store(self, tag: str, data: list[dict[str, Any]]) -> None:
        self._entries[tag] = CatalogEntry(fetched_at=self._clock(), ok=True, data=list(data))

    def record_failure(self, tag: str) -> None:
        self._entries[tag] = CatalogEntry(fetched_at=self._clock(), ok=False)

    def invalidate(self, tag: str | None = None) -> None:
        if tag is None:
            self._entries.clear()
            return
        self._entries.pop(tag, None)


class ModelCatalogService:
    def __init__(
        self,
        api_url: str,
        cache: CatalogCache,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.cache = cache
        self._transport = transport

    async def list_models(self, tags: Iterable[str] = SUPPORTED_PIPELINE_TAGS) -> list[dict[str, Any]]:
        tags = list(dict.fromkeys(tags))
        unsupported = [tag for tag in tags if not is_supported_pipeline_tag(tag)]
        if unsupported:
            raise ValueError(f"unsupported pipeline_tag: {', '.join(unsupported)}")

        pages: dict[str, list[dict[str, Any]]] = {}
        missing: list[str] = []
        for tag in tags:
            cached = self.cache.get(tag)
            if cached is None:
                missing.append(tag)
            else:
                pages[tag] = cached

        if missing:
            async with httpx.AsyncClient(
                timeout=CATALOG_REQUEST_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                fetched = await asyncio.gather(*(self._fetch_tag(client, tag) for tag in missing))
            pages.update(zip(missing, fetched))

        models: dict[str, dict[str, Any]] = {}
        for tag in tags:
            for model in pages.get(tag, []):
                model_id = str(model.get("id") or "").strip()
                if model_id and model_id not in models:
                    models[model_id] = model
        return list(models.values())

    async def _fetch_tag(self, client: httpx.AsyncClient, tag: str) -> list[dict[str, Any]]:
        started = time.monotonic()
        try:
            response = await client.get(f"{self.api_url}/models", params=_query_params(tag))
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.cache.record_failure(tag)
            logger.warning(
                "model_catalog_fetch_failed",
                extra={"path": tag, "outcome": f"{exc.__class__.__name__}: {exc}"},
            )
            return []

        models = [item for item in payload if isinstance(item, dict)] if isinstance(payload, list) else []
        self.cache.store(tag, models)
        logger.info(
            "model_catalog_fetched",
            extra={
                "path": tag,
                "outcome": str(len(models)),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return models


def _query_params(tag: str) -> list[tuple[str, str | int]]:
    params: list[tuple[str, str | int]] = [
        ("pipeline_tag", tag),
        ("inference_provider", "all"),
        ("limit", CATALOG_PAGE_LIMIT),
    ]
    if tag in CONVERSATIONAL_PIPELINE_TAGS:
        params.append(("filter", "conversational"))
    params.extend(("expand[]", field_name) for field_name in EXPAND_FIELDS)
    return params
