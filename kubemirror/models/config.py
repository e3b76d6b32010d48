"""Configuration data structures.

Populated by :func:`kubemirror.config.load_config` from ``KUBEMIRROR_*``
environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class WatchConfig:
    """Which collection the controller mirrors."""

    kind: str = "Deployment"
    namespace: str = ""
    label_selector: str = ""
    field_selector: str = ""
    timeout_seconds: int = 300


@dataclass
class QueueConfig:
    """Work queue rate limiting and retry ceiling."""

    base_delay_ms: int = 5
    max_delay_seconds: int = 1000
    qps: float = 10.0
    burst: int = 100
    max_retries: int = 5


@dataclass
class ControllerConfig:
    workers: int = 1
    sync_timeout_seconds: int = 60


@dataclass
class APIConfig:
    enabled: bool = True
    port: int = 8080


@dataclass
class LogConfig:
    level: str = "info"
    format: str = "json"


@dataclass
class KubeMirrorConfig:
    """Top-level configuration."""

    cluster_id: str = ""
    kubeconfig: str = ""
    watch: WatchConfig = field(default_factory=WatchConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
