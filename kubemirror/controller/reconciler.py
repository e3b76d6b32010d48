"""Reconciler contract and the built-in implementations.

A reconciler receives a key plus the cached snapshot (update path), or just
the key when the resource is no longer cached (deletion path).  Raising any
exception marks the attempt as failed and hands the key to the retry policy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from types import MappingProxyType

from kubemirror.models.resources import ResourceKey, ResourceSnapshot
from kubemirror.observability.logging import get_logger


class Reconciler(ABC):
    """Pluggable reconciliation step invoked by the worker pool."""

    @abstractmethod
    async def reconcile(self, key: ResourceKey, snapshot: ResourceSnapshot) -> None:
        """Converge towards ``snapshot``, the latest cached state of ``key``."""

    @abstractmethod
    async def reconcile_deleted(self, key: ResourceKey) -> None:
        """Handle a key that is absent from the cache.

        Must not fail merely because ``key`` was never seen before.
        """


class MirrorReconciler(Reconciler):
    """Records the last reconciled snapshot per key.

    This is the default reconciler: it keeps a second map of every resource
    that made it through the pipeline, which is useful for inspecting what
    the worker pool has processed as opposed to what the watcher has seen.
    """

    def __init__(self) -> None:
        self._current: dict[ResourceKey, ResourceSnapshot] = {}
        self._log = get_logger("reconciler.mirror")

    async def reconcile(self, key: ResourceKey, snapshot: ResourceSnapshot) -> None:
        self._current[key] = snapshot
        self._log.debug("resource_reconciled", key=key, resource_version=snapshot.resource_version)

    async def reconcile_deleted(self, key: ResourceKey) -> None:
        if self._current.pop(key, None) is not None:
            self._log.debug("resource_removed", key=key)

    @property
    def current(self) -> Mapping[ResourceKey, ResourceSnapshot]:
        return MappingProxyType(dict(self._current))


class CallbackReconciler(Reconciler):
    """Adapts plain coroutine functions to the :class:`Reconciler` contract.

    Example::

        async def apply(key, snapshot): ...
        reconciler = CallbackReconciler(apply)
    """

    def __init__(
        self,
        on_reconcile: Callable[[ResourceKey, ResourceSnapshot], Awaitable[None]],
        on_deleted: Callable[[ResourceKey], Awaitable[None]] | None = None,
    ) -> None:
        self._on_reconcile = on_reconcile
        self._on_deleted = on_deleted

    async def reconcile(self, key: ResourceKey, snapshot: ResourceSnapshot) -> None:
        await self._on_reconcile(key, snapshot)

    async def reconcile_deleted(self, key: ResourceKey) -> None:
        if self._on_deleted is not None:
            await self._on_deleted(key)
