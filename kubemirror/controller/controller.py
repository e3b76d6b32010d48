"""Controller: watcher → cache/queue → worker pool → reconciler → retry policy.

The watcher writes the cache and enqueues keys through the handler methods
implemented here.  Workers never look at event payloads: they pull a key
and read its current state from the cache, so several coalesced events for
one key result in a single reconciliation against the newest state.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from kubemirror.cache.store import LocalCache
from kubemirror.collector.watcher import ResourceWatcher
from kubemirror.controller.retry import ErrorSink, RetryPolicy
from kubemirror.controller.sync import wait_for_cache_sync
from kubemirror.models.resources import ResourceKey, ResourceSnapshot
from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import reconcile_duration_seconds, reconcile_total
from kubemirror.workqueue.queue import WorkQueue
from kubemirror.workqueue.rate_limiter import RateLimiter, default_controller_rate_limiter

if TYPE_CHECKING:
    from kubemirror.controller.reconciler import Reconciler
    from kubemirror.models.config import KubeMirrorConfig

_WORKER_RESTART_DELAY_S: float = 1.0
_DEFAULT_SYNC_TIMEOUT_S: float = 60.0


class Controller:
    """Owns the cache, work queue, watcher and worker pool for one kind.

    Example::

        controller = Controller(apps_v1, MirrorReconciler(), kind="Deployment", workers=2)
        await controller.start()   # returns once the cache is synced
        ...
        await controller.stop()
    """

    def __init__(
        self,
        api: Any,
        reconciler: Reconciler,
        *,
        kind: str = "Deployment",
        namespace: str = "",
        label_selector: str = "",
        field_selector: str = "",
        workers: int = 1,
        sync_timeout_s: float = _DEFAULT_SYNC_TIMEOUT_S,
        max_retries: int = 5,
        rate_limiter: RateLimiter | None = None,
        error_sink: ErrorSink | None = None,
        watch_timeout_s: int = 300,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._reconciler = reconciler
        self._workers = workers
        self._sync_timeout_s = sync_timeout_s
        self._log = get_logger("controller")

        self.cache = LocalCache(kind=kind)
        self.queue = WorkQueue(rate_limiter=rate_limiter or default_controller_rate_limiter(), name=kind.lower())
        self.retry_policy = RetryPolicy(max_retries=max_retries, error_sink=error_sink)
        self.watcher = ResourceWatcher(
            api,
            self.cache,
            self,
            kind=kind,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
            watch_timeout_s=watch_timeout_s,
        )

        self._worker_tasks: list[asyncio.Task[None]] = []
        self._started = False
        self._stopped = False

    @classmethod
    def from_config(
        cls,
        api: Any,
        reconciler: Reconciler,
        config: KubeMirrorConfig,
        error_sink: ErrorSink | None = None,
    ) -> Controller:
        """Build a controller from the loaded configuration."""
        rate_limiter = default_controller_rate_limiter(
            base_delay_s=config.queue.base_delay_ms / 1000.0,
            max_delay_s=float(config.queue.max_delay_seconds),
            qps=config.queue.qps,
            burst=config.queue.burst,
        )
        return cls(
            api,
            reconciler,
            kind=config.watch.kind,
            namespace=config.watch.namespace,
            label_selector=config.watch.label_selector,
            field_selector=config.watch.field_selector,
            workers=config.controller.workers,
            sync_timeout_s=float(config.controller.sync_timeout_seconds),
            max_retries=config.queue.max_retries,
            rate_limiter=rate_limiter,
            error_sink=error_sink,
            watch_timeout_s=config.watch.timeout_seconds,
        )

    # ------------------------------------------------------------------
    # ResourceEventHandler (called by the watcher after the cache write)
    # ------------------------------------------------------------------

    def on_add(self, key: ResourceKey, snapshot: ResourceSnapshot) -> None:
        self.queue.add(key)

    def on_update(self, key: ResourceKey, snapshot: ResourceSnapshot) -> None:
        self.queue.add(key)

    def on_delete(self, key: ResourceKey) -> None:
        self.queue.add(key)

    # ------------------------------------------------------------------
    # Read-only view for the presentation layer
    # ------------------------------------------------------------------

    def has_synced(self) -> bool:
        return self.watcher.has_synced()

    def view(self) -> Mapping[ResourceKey, ResourceSnapshot]:
        return self.cache.view()

    def get(self, key: ResourceKey) -> ResourceSnapshot | None:
        return self.cache.get(key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the watcher, wait for the initial sync, then start workers.

        Raises:
            CacheSyncTimeoutError: the initial list did not finish in time.
            WatcherError: the subscription could not be established.
        The watcher is stopped again before either error propagates.
        """
        if self._started:
            return
        self._started = True

        await self.watcher.start()
        try:
            await wait_for_cache_sync(self.watcher, timeout_s=self._sync_timeout_s)
        except BaseException:
            await self.watcher.stop()
            self.queue.shut_down()
            raise

        self._worker_tasks = [
            asyncio.create_task(self._run_worker(i), name=f"controller-worker-{i}") for i in range(self._workers)
        ]
        self._log.info("controller_started", workers=self._workers, cached=len(self.cache))

    async def stop(self) -> None:
        """Stop the watcher, shut the queue down and let in-flight work finish.

        Safe to call more than once or before :meth:`start`.
        """
        if self._stopped:
            return
        self._stopped = True

        await self.watcher.stop()
        await self.queue.shut_down_with_drain()
        if self._worker_tasks:
            await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks = []
        self._log.info("controller_stopped")

    async def run(self, stop: asyncio.Event) -> None:
        """Start, block until ``stop`` is set, then stop."""
        await self.start()
        try:
            await stop.wait()
        finally:
            await self.stop()

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    async def _run_worker(self, worker_id: int) -> None:
        """Process keys until the queue shuts down, restarting after faults."""
        self._log.debug("worker_started", worker_id=worker_id)
        while True:
            try:
                while await self.process_next_item():
                    pass
                break
            except asyncio.CancelledError:
                break
            except Exception as exc:
                self._log.error("worker_crashed", worker_id=worker_id, error=str(exc), exc_info=True)
                await asyncio.sleep(_WORKER_RESTART_DELAY_S)
        self._log.debug("worker_stopped", worker_id=worker_id)

    async def process_next_item(self) -> bool:
        """Handle one key. Returns False once the queue has shut down."""
        key, shutdown = await self.queue.get()
        if shutdown or key is None:
            return False

        # done() must run exactly once per get(), whatever happens below
        try:
            try:
                await self._sync(key)
            except Exception as exc:
                self.retry_policy.handle_failure(self.queue, key, exc)
            else:
                self.queue.forget(key)
        finally:
            self.queue.done(key)
        return True

    async def _sync(self, key: ResourceKey) -> None:
        """Look the key up in the cache and run the matching reconciler path."""
        snapshot = self.cache.get(key)
        path = "delete" if snapshot is None else "update"
        started = time.monotonic()
        try:
            if snapshot is None:
                await self._reconciler.reconcile_deleted(key)
            else:
                await self._reconciler.reconcile(key, snapshot)
        except Exception:
            reconcile_total.labels(path=path, result="error").inc()
            raise
        finally:
            reconcile_duration_seconds.labels(path=path).observe(time.monotonic() - started)
        reconcile_total.labels(path=path, result="success").inc()
