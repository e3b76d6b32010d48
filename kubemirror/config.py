"""Environment-variable configuration loader.

Every setting is read from a ``KUBEMIRROR_*`` variable.  Numeric settings are
clamped to their documented bounds; values that cannot be interpreted at all
raise ``ValueError`` so that startup fails fast.
"""

from __future__ import annotations

import os

from kubemirror.collector.watcher import SUPPORTED_KINDS
from kubemirror.models.config import (
    APIConfig,
    ControllerConfig,
    KubeMirrorConfig,
    LogConfig,
    QueueConfig,
    WatchConfig,
)
from kubemirror.observability.logging import is_valid_format, is_valid_level

_PREFIX = "KUBEMIRROR_"
_TRUTHY: frozenset[str] = frozenset({"true", "1", "yes", "on"})


def _env(name: str, default: str = "") -> str:
    return os.environ.get(_PREFIX + name, default).strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if not raw:
        return default
    return raw.lower() in _TRUTHY


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid numeric value for {_PREFIX}{name}: {raw!r}") from exc
    return max(minimum, min(maximum, value))


def _env_float(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid numeric value for {_PREFIX}{name}: {raw!r}") from exc
    return max(minimum, min(maximum, value))


def _load_watch() -> WatchConfig:
    kind = _env("WATCH_KIND", "Deployment")
    if kind not in SUPPORTED_KINDS:
        raise ValueError(f"Invalid resource kind {kind!r}; expected one of {', '.join(sorted(SUPPORTED_KINDS))}")
    return WatchConfig(
        kind=kind,
        namespace=_env("WATCH_NAMESPACE"),
        label_selector=_env("WATCH_LABEL_SELECTOR"),
        field_selector=_env("WATCH_FIELD_SELECTOR"),
        timeout_seconds=_env_int("WATCH_TIMEOUT", 300, 30, 3600),
    )


def _load_queue() -> QueueConfig:
    return QueueConfig(
        base_delay_ms=_env_int("QUEUE_BASE_DELAY_MS", 5, 1, 60_000),
        max_delay_seconds=_env_int("QUEUE_MAX_DELAY", 1000, 1, 3600),
        qps=_env_float("QUEUE_QPS", 10.0, 1.0, 1000.0),
        burst=_env_int("QUEUE_BURST", 100, 1, 10_000),
        max_retries=_env_int("MAX_RETRIES", 5, 0, 20),
    )


def _load_log() -> LogConfig:
    level = _env("LOG_LEVEL", "info").lower()
    if not is_valid_level(level):
        raise ValueError(f"Invalid log level {level!r}; expected debug, info, warning or error")
    fmt = _env("LOG_FORMAT", "json").lower()
    if not is_valid_format(fmt):
        raise ValueError(f"Invalid log format {fmt!r}; expected json or console")
    return LogConfig(level=level, format=fmt)


def load_config() -> KubeMirrorConfig:
    """Build a :class:`KubeMirrorConfig` from the current environment."""
    return KubeMirrorConfig(
        cluster_id=_env("CLUSTER_ID"),
        kubeconfig=_env("KUBECONFIG"),
        watch=_load_watch(),
        queue=_load_queue(),
        controller=ControllerConfig(
            workers=_env_int("WORKERS", 1, 1, 64),
            sync_timeout_seconds=_env_int("SYNC_TIMEOUT", 60, 5, 600),
        ),
        api=APIConfig(
            enabled=_env_bool("API_ENABLED", True),
            port=_env_int("API_PORT", 8080, 1024, 65535),
        ),
        log=_load_log(),
    )
