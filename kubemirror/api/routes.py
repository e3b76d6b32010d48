"""FastAPI route handlers for the kubemirror REST API.

All routes are registered on a single APIRouter that ``create_app`` mounts
under the ``/api/v1`` prefix.  The handlers only read from the controller's
cache view; nothing here can write to the cache or the queue.

Error code conventions:
    404 RESOURCE_NOT_FOUND  -- key absent from the local cache
    503 CACHE_NOT_SYNCED    -- initial list not applied yet (``/ready`` only)
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from kubemirror.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ResourceDetail,
    ResourceListResponse,
    ResourceSummary,
)
from kubemirror.models.resources import resource_key

_log = structlog.get_logger(component="api.routes")

router = APIRouter()


def _controller(request: Request) -> Any:
    return request.app.state.controller


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Liveness plus a summary of the pipeline state."""
    from kubemirror import __version__

    controller = _controller(request)
    return HealthResponse(
        version=__version__,
        kind=controller.watcher.kind,
        synced=controller.has_synced(),
        cached_resources=len(controller.cache),
        queue_depth=len(controller.queue),
        in_flight=controller.queue.in_flight(),
    )


@router.get("/ready", response_model=None)
async def ready(request: Request) -> JSONResponse:
    """200 once the cache has synced, 503 before."""
    if not _controller(request).has_synced():
        return _error(503, "CACHE_NOT_SYNCED", "The initial resource listing has not completed yet.")
    return JSONResponse(status_code=200, content={"status": "ready"})


@router.get("/resources", response_model=ResourceListResponse)
async def list_resources(request: Request, namespace: str = "") -> ResourceListResponse:
    """All cached resources, sorted by key, optionally for one namespace."""
    controller = _controller(request)
    items = [ResourceSummary.from_snapshot(s) for s in controller.cache.list(namespace)]
    return ResourceListResponse(kind=controller.watcher.kind, synced=controller.has_synced(), items=items)


@router.get("/resources/{namespace}/{name}", response_model=None)
async def get_resource(request: Request, namespace: str, name: str) -> JSONResponse:
    """Full cached snapshot of one resource."""
    key = resource_key(namespace, name)
    snapshot = _controller(request).get(key)
    if snapshot is None:
        _log.debug("resource_not_found", key=key)
        return _error(404, "RESOURCE_NOT_FOUND", f"{key} is not in the local cache.")
    return JSONResponse(status_code=200, content=ResourceDetail.from_snapshot(snapshot).model_dump(mode="json"))
