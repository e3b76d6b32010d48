"""structlog setup shared by every kubemirror component.

Log lines are JSON on stderr by default; ``console`` output is meant for
running the controller by hand.  Context bound with :func:`bind_cluster`
is merged into every subsequent event.
"""

from __future__ import annotations

import logging
import sys
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger, Processor

_VALID_LEVELS: frozenset[str] = frozenset({"debug", "info", "warning", "error"})
_VALID_FORMATS: frozenset[str] = frozenset({"json", "console"})


def setup_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog (and the stdlib root level used by uvicorn)."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer: Processor = (
        structlog.dev.ConsoleRenderer(colors=False) if fmt == "console" else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    logging.getLogger().setLevel(log_level)


def get_logger(component: str) -> FilteringBoundLogger:
    """Return a logger that tags every event with ``component``."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component))


def bind_cluster(cluster_id: str) -> None:
    """Attach ``cluster_id`` to all later log events; no-op when empty."""
    if cluster_id:
        structlog.contextvars.bind_contextvars(cluster_id=cluster_id)


def is_valid_level(level: str) -> bool:
    return level.lower() in _VALID_LEVELS


def is_valid_format(fmt: str) -> bool:
    return fmt.lower() in _VALID_FORMATS
