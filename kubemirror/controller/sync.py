"""Cache synchronization barrier."""

from __future__ import annotations

import asyncio

from kubemirror.collector.watcher import ResourceWatcher
from kubemirror.observability.logging import get_logger

_log = get_logger("controller.sync")


class CacheSyncTimeoutError(Exception):
    """The initial listing did not complete within the startup deadline."""

    def __init__(self, timeout_s: float) -> None:
        super().__init__(f"timed out after {timeout_s}s waiting for caches to sync")
        self.timeout_s = timeout_s


async def wait_for_cache_sync(*watchers: ResourceWatcher, timeout_s: float) -> None:
    """Block until every watcher has applied its initial list.

    Raises:
        CacheSyncTimeoutError: the deadline passed first.
        WatcherError: a watcher gave up before syncing.
    """
    _log.info("waiting_for_cache_sync", watchers=len(watchers), timeout_s=timeout_s)
    try:
        async with asyncio.timeout(timeout_s):
            await asyncio.gather(*(w.wait_for_sync() for w in watchers))
    except TimeoutError as exc:
        raise CacheSyncTimeoutError(timeout_s) from exc
    _log.info("caches_synced", watchers=len(watchers))
