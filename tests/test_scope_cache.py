from __future__ import annotations

"""
Unit tests for the session scope cache.
"""

import pytest

from scope_cache import ScopeCache


class _Loader:
    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        value = self.values.pop(0)
        if isinstance(value, Exception):
            raise value
        return value


def test_empty_cache_loads() -> None:
    cache = ScopeCache()
    assert cache.is_empty
    loader = _Loader("tree-1")
    assert cache.tree("root", loader) == "tree-1"
    assert loader.calls == 1 and not cache.is_empty


def test_hit_returns_same_object_without_loading() -> None:
    cache = ScopeCache()
    first = object()
    loader = _Loader(first, object())
    assert cache.tree("root", loader) is first
    assert cache.tree("root", loader) is first
    assert loader.calls == 1


def test_invalidate_flag_reloads() -> None:
    cache = ScopeCache()
    loader = _Loader("old", "new")
    cache.tree("root", loader)
    assert cache.tree("root", loader, invalidate=True) == "new"
    assert loader.calls == 2


def test_other_root_is_a_miss() -> None:
    cache = ScopeCache()
    loader = _Loader("tenant-tree", "corp-tree")
    cache.tree("tenant", loader)
    assert cache.tree("corp", loader) == "corp-tree"


def test_failed_reload_keeps_previous_entry() -> None:
    cache = ScopeCache()
    loader = _Loader("kept", RuntimeError("throttled"))
    cache.tree("root", loader)
    with pytest.raises(RuntimeError):
        cache.tree("root", loader, invalidate=True)
    assert cache.tree("root", _Loader("unused")) == "kept"


def test_subscriptions_are_memoized_as_frozenset() -> None:
    cache = ScopeCache()
    loader = _Loader({"a", "b"}, {"c"})
    first = cache.subscriptions("tenant", loader)
    assert first == frozenset({"a", "b"})
    assert cache.subscriptions("tenant", loader) is first
    assert cache.subscriptions("tenant", loader, invalidate=True) == frozenset({"c"})


def test_invalidate_empties_both_entries() -> None:
    cache = ScopeCache()
    cache.tree("root", _Loader("t"))
    cache.subscriptions("tenant", _Loader({"s"}))
    cache.invalidate()
    assert cache.is_empty
    loader = _Loader("fresh")
    assert cache.tree("root", loader) == "fresh"
    assert loader.calls == 1
