"""List-then-watch resource watcher with automatic recovery.

Built on kubernetes_asyncio's Watch, it adds:
- An initial paginated list that is applied to the local cache as a whole,
  followed by a resumable watch from the list's resourceVersion
- A one-shot ``synced`` signal once that first list has been applied
- Exponential back-off (1 s - 60 s) on 429, 5xx and unexpected errors
- Recovery relist on 410 Gone and after 3 consecutive failures
- Fatal exit on 401/403/404 before the first sync, so startup can abort

Every event is decoded, written to the cache, and only then passed to the
handler, which enqueues the key.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Coroutine
from typing import Any, Protocol

from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from kubemirror.cache.store import LocalCache
from kubemirror.collector.decode import DecodeError, decode_object
from kubemirror.models.resources import ResourceKey, ResourceSnapshot, WatchEventType
from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import (
    cache_synced,
    watcher_backoff_seconds,
    watcher_decode_errors_total,
    watcher_errors_total,
    watcher_events_total,
    watcher_reconnects_total,
    watcher_relistings_total,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BACKOFF_MIN_S: float = 1.0
_BACKOFF_MAX_S: float = 60.0
_BACKOFF_MULTIPLIER: float = 2.0

_MAX_CONSECUTIVE_FAILURES: int = 3
_DEFAULT_PAGE_SIZE: int = 500
_DEFAULT_WATCH_TIMEOUT_S: int = 300

# Statuses that mean the subscription can never be established
_FATAL_STARTUP_STATUSES: frozenset[int] = frozenset({401, 403, 404})

# kind -> (cluster-wide list method, namespaced list method)
_KIND_LIST_METHODS: dict[str, tuple[str, str]] = {
    "Deployment": ("list_deployment_for_all_namespaces", "list_namespaced_deployment"),
    "StatefulSet": ("list_stateful_set_for_all_namespaces", "list_namespaced_stateful_set"),
    "DaemonSet": ("list_daemon_set_for_all_namespaces", "list_namespaced_daemon_set"),
    "ReplicaSet": ("list_replica_set_for_all_namespaces", "list_namespaced_replica_set"),
    "Pod": ("list_pod_for_all_namespaces", "list_namespaced_pod"),
    "Service": ("list_service_for_all_namespaces", "list_namespaced_service"),
    "ConfigMap": ("list_config_map_for_all_namespaces", "list_namespaced_config_map"),
    "Job": ("list_job_for_all_namespaces", "list_namespaced_job"),
    "CronJob": ("list_cron_job_for_all_namespaces", "list_namespaced_cron_job"),
}

# kind -> kubernetes_asyncio API class name owning its list methods
KIND_API_CLASSES: dict[str, str] = {
    "Deployment": "AppsV1Api",
    "StatefulSet": "AppsV1Api",
    "DaemonSet": "AppsV1Api",
    "ReplicaSet": "AppsV1Api",
    "Pod": "CoreV1Api",
    "Service": "CoreV1Api",
    "ConfigMap": "CoreV1Api",
    "Job": "BatchV1Api",
    "CronJob": "BatchV1Api",
}

SUPPORTED_KINDS: frozenset[str] = frozenset(_KIND_LIST_METHODS)


class WatcherError(Exception):
    """Raised when a watcher cannot establish or keep its subscription."""


class ResourceEventHandler(Protocol):
    """Receiver of cache-applied notifications; implemented by the controller."""

    def on_add(self, key: ResourceKey, snapshot: ResourceSnapshot) -> None: ...

    def on_update(self, key: ResourceKey, snapshot: ResourceSnapshot) -> None: ...

    def on_delete(self, key: ResourceKey) -> None: ...


class ResourceWatcher:
    """Mirrors one typed collection into a :class:`LocalCache`.

    Lifecycle::

        watcher = ResourceWatcher(apps_v1, cache, handler, kind="Deployment")
        await watcher.start()
        await watcher.wait_for_sync()
        # ... runs until stop() is called
        await watcher.stop()
    """

    def __init__(
        self,
        api: Any,
        cache: LocalCache,
        handler: ResourceEventHandler,
        kind: str = "Deployment",
        namespace: str = "",
        label_selector: str = "",
        field_selector: str = "",
        watch_timeout_s: int = _DEFAULT_WATCH_TIMEOUT_S,
        page_size: int = _DEFAULT_PAGE_SIZE,
        name: str = "",
    ) -> None:
        """Initialise the watcher.

        Args:
            api: A kubernetes_asyncio API instance owning the kind's list
                methods (e.g. ``AppsV1Api`` for Deployments).
            cache: The cache this watcher exclusively writes.
            handler: Receives on_add/on_update/on_delete after each cache write.
            kind: Resource kind; one of :data:`SUPPORTED_KINDS`.
            namespace: Restrict to one namespace; empty for all namespaces.
            label_selector: Optional label selector for list and watch.
            field_selector: Optional field selector for list and watch.
            watch_timeout_s: Server-side timeout of each watch request.
            page_size: ``limit`` used for each list page.
            name: Short identifier used in log/metric labels.
        """
        if kind not in _KIND_LIST_METHODS:
            raise ValueError(f"unsupported resource kind: {kind!r}")
        self._api = api
        self._cache = cache
        self._handler = handler
        self._kind = kind
        self._namespace = namespace
        self._label_selector = label_selector
        self._field_selector = field_selector
        self._watch_timeout_s = watch_timeout_s
        self._page_size = page_size
        self._name = name or kind.lower()
        self._log = get_logger(f"watcher.{self._name}")

        self._resource_version: str = ""
        self._running: bool = False
        self._task: asyncio.Task[None] | None = None

        self._synced = asyncio.Event()
        self._startup_error: WatcherError | None = None

        self._consecutive_failures: int = 0
        self._backoff_s: float = _BACKOFF_MIN_S

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def kind(self) -> str:
        return self._kind

    async def start(self) -> None:
        """Start the list/watch loop as a background asyncio task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._watch_loop(), name=f"watcher-{self._name}")
        self._log.info(
            "watcher_started",
            watcher=self._name,
            kind=self._kind,
            namespace=self._namespace or "*",
        )

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to exit cleanly."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._log.info("watcher_stopped", watcher=self._name)

    def has_synced(self) -> bool:
        """True once the initial list has been applied to the cache and dispatched."""
        return self._synced.is_set()

    async def wait_for_sync(self) -> None:
        """Wait for the initial list to be applied.

        Raises:
            WatcherError: the watcher was never started, or its task exited
                before syncing (e.g. the initial subscription was refused).
        """
        if self._synced.is_set():
            return
        if self._task is None:
            raise WatcherError(f"watcher {self._name} has not been started")

        synced = asyncio.ensure_future(self._synced.wait())
        try:
            await asyncio.wait({synced, self._task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            synced.cancel()

        if self._synced.is_set():
            return
        if self._startup_error is not None:
            raise self._startup_error
        raise WatcherError(f"watcher {self._name} exited before the initial list completed")

    # ------------------------------------------------------------------
    # Internal loop
    # ------------------------------------------------------------------

    async def _watch_loop(self) -> None:
        """Main loop; runs until :attr:`_running` is False."""
        while self._running:
            try:
                if not self._resource_version:
                    await self._list_and_replace()
                await self._run_watch()
            except asyncio.CancelledError:
                return
            except ApiException as exc:
                if not self._running:
                    return
                if not self._synced.is_set() and exc.status in _FATAL_STARTUP_STATUSES:
                    self._fail_startup(exc)
                    return
                await self._handle_api_exception(exc)
            except Exception as exc:
                if not self._running:
                    return
                await self._handle_loop_exception(exc)

    def _list_func(self) -> Callable[..., Coroutine[Any, Any, Any]]:
        cluster_wide, namespaced = _KIND_LIST_METHODS[self._kind]
        method = namespaced if self._namespace else cluster_wide
        return getattr(self._api, method)  # type: ignore[no-any-return]

    def _request_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self._namespace:
            kwargs["namespace"] = self._namespace
        if self._label_selector:
            kwargs["label_selector"] = self._label_selector
        if self._field_selector:
            kwargs["field_selector"] = self._field_selector
        return kwargs

    async def _list_and_replace(self) -> None:
        """List the whole collection page by page and replace the cache content."""
        watcher_relistings_total.labels(watcher=self._name).inc()
        list_func = self._list_func()

        snapshots: list[ResourceSnapshot] = []
        resource_version = ""
        continue_token = ""
        pages = 0
        while True:
            kwargs = self._request_kwargs()
            kwargs["limit"] = self._page_size
            if continue_token:
                kwargs["_continue"] = continue_token

            response = await list_func(_preload_content=False, **kwargs)
            try:
                body = await response.json()
            finally:
                response.release()
            pages += 1

            if not isinstance(body, dict):
                raise WatcherError(f"list response for {self._kind} is not an object")

            for item in body.get("items") or []:
                try:
                    snapshots.append(decode_object(self._kind, item, "LIST"))
                except DecodeError as exc:
                    self._reject(exc)

            metadata = body.get("metadata") or {}
            resource_version = str(metadata.get("resourceVersion") or "")
            continue_token = str(metadata.get("continue") or "")
            if not continue_token:
                break

        self._apply_listing(snapshots)
        self._resource_version = resource_version
        self._reset_backoff()
        self._log.info(
            "list_complete",
            watcher=self._name,
            count=len(snapshots),
            pages=pages,
            resource_version=resource_version,
        )

        if not self._synced.is_set():
            self._synced.set()
            cache_synced.labels(watcher=self._name).set(1)
            self._log.info("watcher_synced", watcher=self._name, count=len(snapshots))

    def _apply_listing(self, snapshots: list[ResourceSnapshot]) -> None:
        """Replace the cache content, then notify the handler of every change."""
        known = set(self._cache.keys())
        removed = self._cache.replace(snapshots)
        for snapshot in snapshots:
            if snapshot.key in known:
                self._handler.on_update(snapshot.key, snapshot)
            else:
                self._handler.on_add(snapshot.key, snapshot)
        for key in removed:
            self._handler.on_delete(key)

    async def _run_watch(self) -> None:
        """Consume a single watch request from the current resource version."""
        kwargs = self._request_kwargs()
        kwargs["allow_watch_bookmarks"] = True
        kwargs["timeout_seconds"] = self._watch_timeout_s
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        received = 0
        bookmarks = 0
        w = watch.Watch()
        try:
            async for raw_event in w.stream(self._list_func(), **kwargs):
                if not self._running:
                    return
                event_type = str(raw_event.get("type", ""))
                raw = raw_event.get("raw_object")

                if event_type == WatchEventType.BOOKMARK:
                    bookmarks += 1
                    rv = _extract_rv(raw)
                    if rv:
                        self._resource_version = rv
                    continue

                if event_type == WatchEventType.ERROR:
                    _raise_for_error_event(raw)

                received += 1
                watcher_events_total.labels(watcher=self._name, event_type=event_type).inc()
                self._handle_event(event_type, raw)
        finally:
            await w.close()

        if received or bookmarks:
            # Server-side timeout after a healthy stream: resume immediately
            self._consecutive_failures = 0
            self._log.debug("watch_stream_ended", watcher=self._name, events=received, bookmarks=bookmarks)
            return

        self._consecutive_failures += 1
        self._log.debug(
            "watch_stream_ended_empty",
            watcher=self._name,
            consecutive_failures=self._consecutive_failures,
        )
        if self._consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
            self._request_relist("consecutive_failures")
        else:
            await self._backoff("stream_end")

    def _handle_event(self, event_type: str, raw: Any) -> None:
        """Decode one event, write the cache, then notify the handler."""
        try:
            snapshot = decode_object(self._kind, raw, event_type)
        except DecodeError as exc:
            self._reject(exc)
            return

        if snapshot.resource_version:
            self._resource_version = snapshot.resource_version
        key = snapshot.key

        if event_type == WatchEventType.DELETED:
            self._cache.delete(key)
            self._handler.on_delete(key)
        elif event_type in (WatchEventType.ADDED, WatchEventType.MODIFIED):
            previous = self._cache.upsert(snapshot)
            if previous is None:
                self._handler.on_add(key, snapshot)
            else:
                self._handler.on_update(key, snapshot)
        else:
            self._log.warning("watch_unknown_event_type", watcher=self._name, event_type=event_type)

    def _reject(self, exc: DecodeError) -> None:
        watcher_decode_errors_total.labels(watcher=self._name).inc()
        self._log.warning(
            "watch_event_decode_failed",
            watcher=self._name,
            event_type=exc.event_type,
            reason=exc.reason,
        )

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    def _fail_startup(self, exc: ApiException) -> None:
        self._startup_error = WatcherError(
            f"cannot establish {self._kind} subscription: HTTP {exc.status} {exc.reason}"
        )
        self._running = False
        watcher_errors_total.labels(watcher=self._name, status_code=str(exc.status)).inc()
        self._log.error(
            "watch_subscription_refused",
            watcher=self._name,
            status=exc.status,
            reason=exc.reason,
        )

    async def _handle_api_exception(self, exc: ApiException) -> None:
        """Pick relist, backoff or both depending on the HTTP status."""
        status = exc.status
        watcher_errors_total.labels(watcher=self._name, status_code=str(status)).inc()

        if status == 410:
            # Gone: resource version too old, must relist
            self._log.warning("watch_gone_410", watcher=self._name)
            watcher_reconnects_total.labels(watcher=self._name, reason="410").inc()
            self._request_relist("410")

        elif status == 429:
            self._log.warning("watch_rate_limited_429", watcher=self._name)
            watcher_reconnects_total.labels(watcher=self._name, reason="429").inc()
            await self._backoff("429")

        else:
            self._consecutive_failures += 1
            self._log.warning(
                "watch_api_error",
                watcher=self._name,
                status=status,
                reason=exc.reason,
                consecutive_failures=self._consecutive_failures,
            )
            watcher_reconnects_total.labels(watcher=self._name, reason=str(status)).inc()
            if self._consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
                self._request_relist(f"{status}_limit")
            await self._backoff(str(status))

    async def _handle_loop_exception(self, exc: Exception) -> None:
        """Handle unexpected exceptions from the list/watch loop."""
        self._consecutive_failures += 1
        self._log.error(
            "watch_unexpected_error",
            watcher=self._name,
            error=str(exc),
            consecutive_failures=self._consecutive_failures,
            exc_info=True,
        )
        watcher_reconnects_total.labels(watcher=self._name, reason="unexpected").inc()
        if self._consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
            self._request_relist("unexpected_limit")
        await self._backoff("unexpected")

    def _request_relist(self, reason: str) -> None:
        """Forget the resource version so the next loop iteration lists again."""
        self._log.info("relist_requested", watcher=self._name, reason=reason)
        self._resource_version = ""
        self._consecutive_failures = 0

    # ------------------------------------------------------------------
    # Back-off
    # ------------------------------------------------------------------

    async def _backoff(self, reason: str) -> None:
        """Wait out the current delay and double it for next time."""
        delay = min(self._backoff_s, _BACKOFF_MAX_S)
        self._log.debug("watcher_backoff", watcher=self._name, reason=reason, delay_s=delay)
        watcher_backoff_seconds.labels(watcher=self._name).observe(delay)
        await asyncio.sleep(delay)
        self._backoff_s = min(self._backoff_s * _BACKOFF_MULTIPLIER, _BACKOFF_MAX_S)

    def _reset_backoff(self) -> None:
        """Reset back-off to minimum after a successful list."""
        self._backoff_s = _BACKOFF_MIN_S
        self._consecutive_failures = 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _extract_rv(raw: Any) -> str:
    """Extract resourceVersion from a raw object's metadata."""
    if not isinstance(raw, dict):
        return ""
    metadata = raw.get("metadata", {})
    if not isinstance(metadata, dict):
        return ""
    return str(metadata.get("resourceVersion", "") or "")


def _raise_for_error_event(raw: Any) -> None:
    """Turn an ERROR watch event (a Status object) into an ApiException."""
    code = 500
    message = "watch error event"
    if isinstance(raw, dict):
        try:
            code = int(raw.get("code", 500))
        except (TypeError, ValueError):
            code = 500
        message = str(raw.get("message") or raw.get("reason") or message)
    raise ApiException(status=code, reason=message)
