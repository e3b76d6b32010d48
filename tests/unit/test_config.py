"""Tests for kubemirror.config.load_config."""

from __future__ import annotations

import pytest

from kubemirror.config import load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    import os

    for name in list(os.environ):
        if name.startswith("KUBEMIRROR_"):
            monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults(self) -> None:
        config = load_config()
        assert config.watch.kind == "Deployment"
        assert config.watch.namespace == ""
        assert config.watch.timeout_seconds == 300
        assert config.queue.base_delay_ms == 5
        assert config.queue.max_delay_seconds == 1000
        assert config.queue.qps == 10.0
        assert config.queue.burst == 100
        assert config.queue.max_retries == 5
        assert config.controller.workers == 1
        assert config.controller.sync_timeout_seconds == 60
        assert config.api.enabled is True
        assert config.api.port == 8080
        assert config.log.level == "info"
        assert config.log.format == "json"


class TestOverrides:
    def test_watch_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEMIRROR_WATCH_KIND", "StatefulSet")
        monkeypatch.setenv("KUBEMIRROR_WATCH_NAMESPACE", "prod")
        monkeypatch.setenv("KUBEMIRROR_WATCH_LABEL_SELECTOR", "app=web")
        monkeypatch.setenv("KUBEMIRROR_WATCH_FIELD_SELECTOR", "metadata.name=web")
        config = load_config()
        assert config.watch.kind == "StatefulSet"
        assert config.watch.namespace == "prod"
        assert config.watch.label_selector == "app=web"
        assert config.watch.field_selector == "metadata.name=web"

    def test_queue_and_controller_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEMIRROR_QUEUE_BASE_DELAY_MS", "50")
        monkeypatch.setenv("KUBEMIRROR_QUEUE_QPS", "2.5")
        monkeypatch.setenv("KUBEMIRROR_MAX_RETRIES", "3")
        monkeypatch.setenv("KUBEMIRROR_WORKERS", "4")
        config = load_config()
        assert config.queue.base_delay_ms == 50
        assert config.queue.qps == 2.5
        assert config.queue.max_retries == 3
        assert config.controller.workers == 4

    @pytest.mark.parametrize("value", ["false", "0", "no", "off"])
    def test_api_can_be_disabled(self, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
        monkeypatch.setenv("KUBEMIRROR_API_ENABLED", value)
        assert load_config().api.enabled is False

    def test_log_level_is_lowercased(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEMIRROR_LOG_LEVEL", "DEBUG")
        assert load_config().log.level == "debug"

    def test_cluster_id_and_kubeconfig(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEMIRROR_CLUSTER_ID", "prod-eu")
        monkeypatch.setenv("KUBEMIRROR_KUBECONFIG", "/tmp/kubeconfig")
        config = load_config()
        assert config.cluster_id == "prod-eu"
        assert config.kubeconfig == "/tmp/kubeconfig"


class TestClamping:
    @pytest.mark.parametrize(
        "name,value,attr,expected",
        [
            ("KUBEMIRROR_WORKERS", "0", ("controller", "workers"), 1),
            ("KUBEMIRROR_WORKERS", "1000", ("controller", "workers"), 64),
            ("KUBEMIRROR_MAX_RETRIES", "-3", ("queue", "max_retries"), 0),
            ("KUBEMIRROR_WATCH_TIMEOUT", "5", ("watch", "timeout_seconds"), 30),
            ("KUBEMIRROR_SYNC_TIMEOUT", "99999", ("controller", "sync_timeout_seconds"), 600),
            ("KUBEMIRROR_API_PORT", "80", ("api", "port"), 1024),
        ],
    )
    def test_values_clamped_to_bounds(
        self,
        monkeypatch: pytest.MonkeyPatch,
        name: str,
        value: str,
        attr: tuple[str, str],
        expected: int,
    ) -> None:
        monkeypatch.setenv(name, value)
        section = getattr(load_config(), attr[0])
        assert getattr(section, attr[1]) == expected


class TestInvalidValues:
    def test_non_numeric_value_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEMIRROR_WORKERS", "lots")
        with pytest.raises(ValueError, match="Invalid numeric value for KUBEMIRROR_WORKERS"):
            load_config()

    def test_unknown_kind_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEMIRROR_WATCH_KIND", "Widget")
        with pytest.raises(ValueError, match="Invalid resource kind"):
            load_config()

    def test_unknown_log_level_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEMIRROR_LOG_LEVEL", "verbose")
        with pytest.raises(ValueError, match="Invalid log level"):
            load_config()

    def test_unknown_log_format_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEMIRROR_LOG_FORMAT", "xml")
        with pytest.raises(ValueError, match="Invalid log format"):
            load_config()
