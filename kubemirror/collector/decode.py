"""Typed decode step at the watcher boundary.

Raw watch/list objects are turned into :class:`ResourceSnapshot` here, before
they can reach the cache or the work queue.  Anything that cannot be decoded
is rejected with :class:`DecodeError`.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from kubemirror.models.resources import ResourceSnapshot


class DecodeError(Exception):
    """Raised when a watch or list object is not a decodable resource."""

    def __init__(self, reason: str, event_type: str = "") -> None:
        super().__init__(reason if not event_type else f"{event_type}: {reason}")
        self.reason = reason
        self.event_type = event_type


def decode_object(kind: str, raw: Any, event_type: str = "") -> ResourceSnapshot:
    """Decode a raw (camelCase) object dict into a snapshot of ``kind``.

    Args:
        kind: Expected resource kind, e.g. ``"Deployment"``.
        raw: The object dict from the watch stream or a list page.
        event_type: Carried into the error message only.

    Raises:
        DecodeError: ``raw`` is not a mapping, has no metadata or name, or
            declares a different kind.
    """
    if not isinstance(raw, Mapping):
        raise DecodeError(f"expected a mapping, got {type(raw).__name__}", event_type)

    declared_kind = raw.get("kind")
    if declared_kind and declared_kind != kind:
        raise DecodeError(f"expected kind {kind}, got {declared_kind}", event_type)

    metadata = raw.get("metadata")
    if not isinstance(metadata, Mapping):
        raise DecodeError("object has no metadata", event_type)

    name = metadata.get("name")
    if not name or not isinstance(name, str):
        raise DecodeError("object has no name", event_type)

    generation = metadata.get("generation", 0)
    try:
        generation = int(generation or 0)
    except (TypeError, ValueError):
        generation = 0

    return ResourceSnapshot(
        kind=kind,
        namespace=str(metadata.get("namespace") or ""),
        name=name,
        resource_version=str(metadata.get("resourceVersion") or ""),
        uid=str(metadata.get("uid") or ""),
        generation=generation,
        labels=_string_map(metadata.get("labels")),
        annotations=_string_map(metadata.get("annotations")),
        spec=_section(raw.get("spec")),
        status=_section(raw.get("status")),
        observed_at=datetime.now(tz=UTC),
    )


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    return {str(k): str(v) for k, v in value.items()}


def _section(value: Any) -> dict[str, object]:
    # Deep copy so the snapshot shares nothing with the stream payload
    if not isinstance(value, Mapping):
        return {}
    return copy.deepcopy(dict(value))
