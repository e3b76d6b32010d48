"""In-memory mirror of the watched collection.

``LocalCache`` maps ``ResourceKey`` to the latest ``ResourceSnapshot``.  The
watcher is its only writer; workers, the REST API and the CLI only read.
The cache owns its lock, and every read returns a copy or an immutable
snapshot, so callers never iterate live state.
"""

from __future__ import annotations

import builtins
import threading
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from kubemirror.models.resources import ResourceKey, ResourceSnapshot
from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import cache_resources


class LocalCache:
    """Keyed store of the most recent snapshot per resource.

    Example::

        cache = LocalCache(kind="Deployment")
        cache.upsert(snapshot)
        cache.get("default/web")
    """

    def __init__(self, kind: str = "") -> None:
        self._kind = kind
        self._lock = threading.RLock()
        self._items: dict[ResourceKey, ResourceSnapshot] = {}
        self._log = get_logger("cache.store")

    # ------------------------------------------------------------------
    # Write interface (watcher only)
    # ------------------------------------------------------------------

    def upsert(self, snapshot: ResourceSnapshot) -> ResourceSnapshot | None:
        """Insert or supersede the entry for ``snapshot.key``.

        Returns the snapshot that was replaced, or None for a new key.
        """
        with self._lock:
            previous = self._items.get(snapshot.key)
            self._items[snapshot.key] = snapshot
            self._emit_size()
        return previous

    def delete(self, key: ResourceKey) -> ResourceSnapshot | None:
        """Remove ``key``. Returns the removed snapshot; absent keys are a no-op."""
        with self._lock:
            previous = self._items.pop(key, None)
            self._emit_size()
        return previous

    def replace(self, snapshots: Iterable[ResourceSnapshot]) -> dict[ResourceKey, ResourceSnapshot]:
        """Swap the whole content for a fresh listing.

        Returns the entries that were present before but are missing from
        ``snapshots``; the caller reports them as deletions.
        """
        fresh = {s.key: s for s in snapshots}
        with self._lock:
            removed = {k: v for k, v in self._items.items() if k not in fresh}
            self._items = fresh
            self._emit_size()
        self._log.debug("cache_replaced", kind=self._kind, size=len(fresh), removed=len(removed))
        return removed

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    def get(self, key: ResourceKey) -> ResourceSnapshot | None:
        with self._lock:
            return self._items.get(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def keys(self) -> builtins.list[ResourceKey]:
        """Return a sorted copy of the current keys."""
        with self._lock:
            return sorted(self._items)

    def list(self, namespace: str = "") -> builtins.list[ResourceSnapshot]:
        """Return snapshots sorted by key, optionally filtered by namespace."""
        with self._lock:
            items = builtins.list(self._items.values())
        if namespace:
            items = [s for s in items if s.namespace == namespace]
        return sorted(items, key=lambda s: s.key)

    def view(self) -> Mapping[ResourceKey, ResourceSnapshot]:
        """Return a read-only, point-in-time copy of the whole cache."""
        with self._lock:
            return MappingProxyType(dict(self._items))

    def _emit_size(self) -> None:
        cache_resources.labels(kind=self._kind or "unknown").set(len(self._items))
