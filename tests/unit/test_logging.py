"""Tests for kubemirror.observability.logging."""

from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
import structlog

from kubemirror.observability.logging import bind_cluster, get_logger, is_valid_format, is_valid_level, setup_logging


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


class TestLogging:
    @pytest.mark.parametrize("level", ["debug", "INFO", "warning", "error"])
    def test_valid_levels(self, level: str) -> None:
        assert is_valid_level(level) is True

    def test_invalid_level(self) -> None:
        assert is_valid_level("trace") is False

    def test_json_output_carries_component(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("info")
        get_logger("controller").info("controller_started", workers=2)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "controller_started"
        assert record["component"] == "controller"
        assert record["workers"] == 2
        assert record["level"] == "info"
        assert "ts" in record

    def test_level_filters_debug(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("warning")
        get_logger("controller").info("hidden")
        assert "hidden" not in capsys.readouterr().err

    def test_cluster_id_bound_to_every_event(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("info")
        bind_cluster("prod-eu")
        try:
            get_logger("watcher").info("watcher_synced")
        finally:
            structlog.contextvars.clear_contextvars()
        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["cluster_id"] == "prod-eu"

    def test_console_format(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("info", fmt="console")
        get_logger("app").info("app_started")
        assert "app_started" in capsys.readouterr().err

    def test_format_validation(self) -> None:
        assert is_valid_format("JSON") is True
        assert is_valid_format("xml") is False
