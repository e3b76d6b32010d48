"""Process entrypoint: builds the mirror pipeline and runs it until signalled.

Bring-up sequence::

    config → logging → API client → controller (blocks on cache sync) → REST

Teardown walks the same list backwards.  A component that fails to stop is
logged and skipped so the remaining ones still get their turn.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from kubemirror.config import load_config
from kubemirror.models.config import KubeMirrorConfig
from kubemirror.observability.logging import bind_cluster, get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from kubemirror.controller import Controller, Reconciler

_STOP_TIMEOUT_S: float = 15.0
_LISTEN_HOST = "0.0.0.0"


class _ComponentError(Exception):
    """A required piece of the pipeline could not be brought up."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"{component} failed during startup: {cause}")
        self.component = component
        self.cause = cause


class KubeMirrorApp:
    """Holds the API client, controller and REST server for one process.

    Pass a custom ``reconciler`` to run your own logic instead of the
    bookkeeping :class:`~kubemirror.controller.MirrorReconciler`.
    """

    def __init__(self, reconciler: Reconciler | None = None) -> None:
        self.config: KubeMirrorConfig | None = None

        self._reconciler = reconciler
        self._k8s_client: Any | None = None
        self._controller: Controller | None = None
        self._rest_server: Any | None = None

        self._tasks: list[asyncio.Task[None]] = []
        self._closed = asyncio.Event()
        self._running = False
        self._log: FilteringBoundLogger | None = None

    # ------------------------------------------------------------------
    # Bring-up
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bring every component up; raises _ComponentError on the first failure."""
        self.config = load_config()

        setup_logging(self.config.log.level, self.config.log.format)
        bind_cluster(self.config.cluster_id)
        self._log = get_logger("app")
        self._log.info("app_starting", version=_kubemirror_version(), kind=self.config.watch.kind)

        await self._start_k8s_client()
        await self._start_controller()
        await self._start_rest()

        self._running = True
        self._log.info("app_started", cached=len(self._controller.cache) if self._controller else 0)

    async def _start_k8s_client(self) -> None:
        assert self._log is not None and self.config is not None
        try:
            from kubernetes_asyncio import client as k8s_client
            from kubernetes_asyncio import config as k8s_config

            if self.config.kubeconfig:
                await k8s_config.load_kube_config(config_file=self.config.kubeconfig)
                source = self.config.kubeconfig
            else:
                try:
                    k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                    source = "in-cluster"
                except k8s_config.ConfigException:
                    await k8s_config.load_kube_config()
                    source = "default kubeconfig"

            self._k8s_client = k8s_client.ApiClient()
            self._log.info("k8s_client_ready", source=source)
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_controller(self) -> None:
        """Create the controller for the configured kind; returns once its cache is synced."""
        assert self._log is not None and self.config is not None
        try:
            from kubernetes_asyncio import client as k8s_client

            from kubemirror.collector.watcher import KIND_API_CLASSES
            from kubemirror.controller import Controller, MirrorReconciler

            api = getattr(k8s_client, KIND_API_CLASSES[self.config.watch.kind])(self._k8s_client)
            self._controller = Controller.from_config(api, self._reconciler or MirrorReconciler(), self.config)
            await self._controller.start()
            self._log.info("controller_ready", workers=self.config.controller.workers)
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    async def _start_rest(self) -> None:
        assert self._log is not None and self.config is not None
        if not self.config.api.enabled:
            self._log.info("rest_api_disabled")
            return
        try:
            import uvicorn

            from kubemirror.api import create_app

            server = uvicorn.Server(
                uvicorn.Config(
                    app=create_app(self._controller),
                    host=_LISTEN_HOST,
                    port=self.config.api.port,
                    log_config=None,
                    access_log=False,
                )
            )
            # main() owns SIGINT/SIGTERM
            server.install_signal_handlers = lambda: None  # type: ignore[method-assign]
            self._tasks.append(asyncio.create_task(server.serve(), name="rest-server"))
            self._rest_server = server
            self._log.info("rest_api_listening", host=_LISTEN_HOST, port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def stop(self) -> None:
        """Tear everything down; safe to call repeatedly or before start()."""
        if self._closed.is_set():
            return
        log = self._log or get_logger("app")
        log.info("app_stopping")
        self._running = False

        if self._rest_server is not None:
            self._rest_server.should_exit = True
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self._stop_quietly("controller", self._controller)
        if self._k8s_client is not None:
            try:
                await self._k8s_client.close()
            except Exception as exc:
                log.debug("k8s_client_close_failed", error=str(exc))
            self._k8s_client = None

        self._closed.set()
        log.info("app_stopped")

    async def _stop_quietly(self, name: str, component: Any | None) -> None:
        if component is None:
            return
        log = self._log or get_logger("app")
        try:
            await asyncio.wait_for(component.stop(), timeout=_STOP_TIMEOUT_S)
        except TimeoutError:
            log.warning("component_stop_timeout", component=name, timeout_s=_STOP_TIMEOUT_S)
        except Exception as exc:
            log.error("component_stop_failed", component=name, error=str(exc))


def _kubemirror_version() -> str:
    from kubemirror import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Run the app until SIGINT/SIGTERM; exit 1 if startup fails."""
    app = KubeMirrorApp()
    loop = asyncio.get_running_loop()
    stopping: asyncio.Task[None] | None = None

    def _on_signal() -> None:
        nonlocal stopping
        if stopping is None:
            stopping = asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _on_signal)

    try:
        await app.start()
        await app.wait_closed()
    except _ComponentError as exc:
        if stopping is not None:
            # Signalled mid-startup; the failure is the shutdown itself
            get_logger("app").info("startup_interrupted", component=exc.component)
            await stopping
            return
        get_logger("app").critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
            error_type=type(exc.cause).__name__,
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        if app._running:
            await app.stop()
