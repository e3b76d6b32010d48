"""Tests for kubemirror.controller.reconciler."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from kubemirror.controller.reconciler import CallbackReconciler, MirrorReconciler
from kubemirror.models.resources import ResourceSnapshot


def _snap(name: str, rv: str = "1") -> ResourceSnapshot:
    return ResourceSnapshot(kind="Deployment", namespace="default", name=name, resource_version=rv)


class TestMirrorReconciler:
    async def test_reconcile_records_latest_snapshot(self) -> None:
        reconciler = MirrorReconciler()
        await reconciler.reconcile("default/a", _snap("a", "1"))
        await reconciler.reconcile("default/a", _snap("a", "2"))
        assert reconciler.current["default/a"].resource_version == "2"

    async def test_reconcile_deleted_removes_entry(self) -> None:
        reconciler = MirrorReconciler()
        await reconciler.reconcile("default/a", _snap("a"))
        await reconciler.reconcile_deleted("default/a")
        assert "default/a" not in reconciler.current

    async def test_reconcile_deleted_unknown_key_is_noop(self) -> None:
        reconciler = MirrorReconciler()
        await reconciler.reconcile_deleted("default/never-seen")
        assert len(reconciler.current) == 0

    async def test_current_is_read_only_copy(self) -> None:
        reconciler = MirrorReconciler()
        await reconciler.reconcile("default/a", _snap("a"))
        current = reconciler.current
        await reconciler.reconcile("default/b", _snap("b"))
        assert list(current) == ["default/a"]
        with pytest.raises(TypeError):
            current["x"] = _snap("x")  # type: ignore[index]


class TestCallbackReconciler:
    async def test_delegates_to_callbacks(self) -> None:
        on_reconcile = AsyncMock()
        on_deleted = AsyncMock()
        reconciler = CallbackReconciler(on_reconcile, on_deleted)
        snap = _snap("a")

        await reconciler.reconcile("default/a", snap)
        await reconciler.reconcile_deleted("default/b")

        on_reconcile.assert_awaited_once_with("default/a", snap)
        on_deleted.assert_awaited_once_with("default/b")

    async def test_missing_delete_callback_is_noop(self) -> None:
        reconciler = CallbackReconciler(AsyncMock())
        await reconciler.reconcile_deleted("default/a")

    async def test_callback_errors_propagate(self) -> None:
        reconciler = CallbackReconciler(AsyncMock(side_effect=RuntimeError("apply failed")))
        with pytest.raises(RuntimeError, match="apply failed"):
            await reconciler.reconcile("default/a", _snap("a"))
