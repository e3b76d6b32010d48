"""Pydantic response models for the kubemirror REST API.

All models use Pydantic v2 syntax.  Field descriptions are also used by
FastAPI to generate the OpenAPI spec.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from kubemirror.models.resources import ResourceSnapshot


class HealthResponse(BaseModel):
    """Response body for ``GET /api/v1/health``."""

    status: str = Field(default="ok", description="Always ``ok`` while the process serves requests.")
    version: str
    kind: str = Field(..., description="Resource kind mirrored by this controller.")
    synced: bool = Field(..., description="Whether the initial list has been applied to the cache.")
    cached_resources: int = Field(..., ge=0)
    queue_depth: int = Field(..., ge=0, description="Keys waiting for a worker.")
    in_flight: int = Field(..., ge=0, description="Keys currently being reconciled.")


class ResourceSummary(BaseModel):
    """One row of ``GET /api/v1/resources``."""

    key: str
    namespace: str
    name: str
    ready: str = Field(default="", description="``ready/desired`` replicas where the kind has replicas.")
    generation: int = 0
    resource_version: str

    @classmethod
    def from_snapshot(cls, snapshot: ResourceSnapshot) -> ResourceSummary:
        return cls(
            key=snapshot.key,
            namespace=snapshot.namespace,
            name=snapshot.name,
            ready=snapshot.ready_summary(),
            generation=snapshot.generation,
            resource_version=snapshot.resource_version,
        )


class ResourceListResponse(BaseModel):
    """Response body for ``GET /api/v1/resources``."""

    kind: str
    synced: bool
    items: list[ResourceSummary] = Field(default_factory=list)


class ResourceDetail(BaseModel):
    """Response body for ``GET /api/v1/resources/{namespace}/{name}``."""

    kind: str
    key: str
    namespace: str
    name: str
    uid: str
    resource_version: str
    generation: int
    labels: dict[str, str]
    annotations: dict[str, str]
    spec: dict[str, Any]
    status: dict[str, Any]
    observed_at: datetime

    @classmethod
    def from_snapshot(cls, snapshot: ResourceSnapshot) -> ResourceDetail:
        return cls(
            kind=snapshot.kind,
            key=snapshot.key,
            namespace=snapshot.namespace,
            name=snapshot.name,
            uid=snapshot.uid,
            resource_version=snapshot.resource_version,
            generation=snapshot.generation,
            labels=snapshot.labels,
            annotations=snapshot.annotations,
            spec=snapshot.spec,
            status=snapshot.status,
            observed_at=snapshot.observed_at,
        )


class ErrorResponse(BaseModel):
    """Error envelope returned with every non-2xx response."""

    error: str = Field(..., description="Machine-readable error code.")
    detail: str = Field(..., description="Human-readable description.")
