"""FastAPI application factory."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from kubemirror.api.routes import router


def create_app(controller: Any) -> FastAPI:
    """Build the API around a running (or starting) controller.

    ``controller`` only needs the read-only surface of
    :class:`kubemirror.controller.Controller`: ``has_synced``, ``get``,
    ``cache``, ``queue`` and ``watcher.kind``.
    """
    from kubemirror import __version__

    app = FastAPI(title="kubemirror", version=__version__)
    app.state.controller = controller
    app.include_router(router, prefix="/api/v1")
    app.mount("/metrics", make_asgi_app())
    return app
