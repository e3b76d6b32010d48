"""Tests for kubemirror.cache.store.LocalCache."""

from __future__ import annotations

import pytest

from kubemirror.cache.store import LocalCache
from kubemirror.models.resources import ResourceSnapshot


def _snap(name: str, namespace: str = "default", rv: str = "1") -> ResourceSnapshot:
    return ResourceSnapshot(kind="Deployment", namespace=namespace, name=name, resource_version=rv)


class TestWrites:
    def test_upsert_new_key_returns_none(self) -> None:
        cache = LocalCache(kind="Deployment")
        assert cache.upsert(_snap("a")) is None
        assert "default/a" in cache

    def test_upsert_supersedes_and_returns_previous(self) -> None:
        cache = LocalCache()
        first = _snap("a", rv="1")
        cache.upsert(first)
        previous = cache.upsert(_snap("a", rv="2"))
        assert previous is first
        entry = cache.get("default/a")
        assert entry is not None and entry.resource_version == "2"
        assert len(cache) == 1

    def test_delete_returns_removed_snapshot(self) -> None:
        cache = LocalCache()
        snap = _snap("a")
        cache.upsert(snap)
        assert cache.delete("default/a") is snap
        assert cache.get("default/a") is None

    def test_delete_absent_key_is_noop(self) -> None:
        cache = LocalCache()
        assert cache.delete("default/missing") is None
        assert len(cache) == 0

    def test_replace_swaps_content_and_reports_removed(self) -> None:
        cache = LocalCache()
        cache.upsert(_snap("a"))
        cache.upsert(_snap("b"))

        removed = cache.replace([_snap("b", rv="5"), _snap("c")])

        assert set(removed) == {"default/a"}
        assert cache.keys() == ["default/b", "default/c"]
        entry = cache.get("default/b")
        assert entry is not None and entry.resource_version == "5"

    def test_replace_with_empty_listing_clears(self) -> None:
        cache = LocalCache()
        cache.upsert(_snap("a"))
        assert set(cache.replace([])) == {"default/a"}
        assert len(cache) == 0


class TestReads:
    def test_keys_are_sorted(self) -> None:
        cache = LocalCache()
        for name in ("zeta", "alpha", "mid"):
            cache.upsert(_snap(name))
        assert cache.keys() == ["default/alpha", "default/mid", "default/zeta"]

    def test_list_filters_by_namespace(self) -> None:
        cache = LocalCache()
        cache.upsert(_snap("a", namespace="prod"))
        cache.upsert(_snap("b", namespace="dev"))
        cache.upsert(_snap("c", namespace="prod"))
        assert [s.name for s in cache.list("prod")] == ["a", "c"]
        assert len(cache.list()) == 3

    def test_view_is_read_only(self) -> None:
        cache = LocalCache()
        cache.upsert(_snap("a"))
        view = cache.view()
        with pytest.raises(TypeError):
            view["default/b"] = _snap("b")  # type: ignore[index]

    def test_view_is_point_in_time(self) -> None:
        cache = LocalCache()
        cache.upsert(_snap("a"))
        view = cache.view()
        cache.upsert(_snap("b"))
        cache.delete("default/a")
        assert list(view) == ["default/a"]

    def test_keys_copy_is_detached(self) -> None:
        cache = LocalCache()
        cache.upsert(_snap("a"))
        keys = cache.keys()
        keys.append("default/injected")
        assert "default/injected" not in cache
