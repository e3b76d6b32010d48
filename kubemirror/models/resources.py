"""Resource identity and snapshot data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

# "<namespace>/<name>", or "<name>" for cluster-scoped resources
ResourceKey = str


class WatchEventType(StrEnum):
    """Watch stream event types."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


def resource_key(namespace: str, name: str) -> ResourceKey:
    """Build the cache/queue key for a resource.

    Raises ValueError if ``name`` is empty.
    """
    if not name:
        raise ValueError("resource name must not be empty")
    return f"{namespace}/{name}" if namespace else name


def split_key(key: ResourceKey) -> tuple[str, str]:
    """Split a key back into ``(namespace, name)``.

    Raises ValueError for keys with more than one ``/`` or an empty name.
    """
    parts = key.split("/")
    if len(parts) == 1:
        namespace, name = "", parts[0]
    elif len(parts) == 2:
        namespace, name = parts
    else:
        raise ValueError(f"unexpected key format: {key!r}")
    if not name:
        raise ValueError(f"unexpected key format: {key!r}")
    return namespace, name


@dataclass(frozen=True)
class ResourceSnapshot:
    """State of one resource as last observed on the watch stream.

    Snapshots are never mutated: every update notification produces a new
    one that supersedes the old entry in the local cache.
    """

    kind: str
    namespace: str
    name: str
    resource_version: str
    uid: str = ""
    generation: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    spec: dict[str, object] = field(default_factory=dict)
    status: dict[str, object] = field(default_factory=dict)
    observed_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def key(self) -> ResourceKey:
        return resource_key(self.namespace, self.name)

    def ready_summary(self) -> str:
        """Return a ``ready/desired`` replica string, or ``""`` if not applicable."""
        desired = self.spec.get("replicas")
        if desired is None:
            return ""
        ready = self.status.get("readyReplicas", 0) or 0
        return f"{ready}/{desired}"
