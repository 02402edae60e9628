from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from playground.api import generate, models, ops
from playground.config import load_settings
from playground.deps import set_dependencies
from playground.errors import error_from_exception
from playground.observability.logging import get_runtime_logger
from playground.services.generation_service import GenerationService
from playground.services.model_catalog_service import CatalogCache, ModelCatalogService
from playground.trace import TRACE_HEADER, get_current_trace_id, normalize_trace_id, set_current_trace_id
from playground.version import get_playground_version

settings = load_settings()
logger = get_runtime_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.debug_mcp:
        logging.getLogger("playground.agent.mcp").setLevel(logging.DEBUG)
    catalog_cache = CatalogCache(ttl_seconds=settings.catalog_ttl_seconds)
    generation_service = GenerationService(settings)
    catalog_service = ModelCatalogService(settings.hf_api_url, catalog_cache)
    app.state.catalog_cache = catalog_cache
    set_dependencies(generation_service, catalog_service)
    logger.info("playground_started", extra={"path": settings.hf_router_url})

    yield

    catalog_cache.invalidate()


app = FastAPI(title="Inference Playground", version=get_playground_version(), lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def trace_middleware(request: Request, call_next):
    trace_id = normalize_trace_id(request.headers.get(TRACE_HEADER))
    request.state.trace_id = trace_id
    set_current_trace_id(trace_id)
    started = datetime.now(tz=timezone.utc)
    try:
        response = await call_next(request)
    except Exception as exc:  # noqa: BLE001
        status_code, payload = error_from_exception(exc, trace_id)
        response = JSONResponse(status_code=status_code, content=payload)
    duration_ms = int((datetime.now(tz=timezone.utc) - started).total_seconds() * 1000)
    logger.info(
        "http_request",
        extra={
            "trace_id": trace_id,
            "path": request.url.path,
            "method": request.method,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "outcome": "ok" if response.status_code < 400 else "error",
        },
    )
    response.headers[TRACE_HEADER] = trace_id
    return response


@app.exception_handler(Exception)
async def exception_handler(request: Request, exc: Exception):
    trace_id = str(getattr(request.state, "trace_id", get_current_trace_id()))
    status_code, payload = error_from_exception(exc, trace_id)
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers[TRACE_HEADER] = trace_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return await exception_handler(request, exc)


app.include_router(generate.router)
app.include_router(models.router)
app.include_router(ops.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("playground.main:app", host=settings.host, port=settings.port)
