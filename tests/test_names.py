"""
tests/test_names.py — Display-name resolver
============================================
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from wrwatch.engine.names import NameResolver


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _source(names: dict[str, str]) -> MagicMock:
    source = MagicMock()
    source.display_names = AsyncMock(
        side_effect=lambda ids: {i: names[i] for i in ids if i in names}
    )
    return source


class TestNameResolver:
    """Per-cycle caching and batching."""

    def test_get_caches_result(self):
        source = _source({"acc-1": "Alice"})
        names = NameResolver(source)

        assert run_async(names.get("acc-1")) == "Alice"
        assert run_async(names.get("acc-1")) == "Alice"
        source.display_names.assert_awaited_once_with(["acc-1"])

    def test_unknown_id_cached_as_empty(self):
        source = _source({})
        names = NameResolver(source)

        assert run_async(names.get("ghost")) == ""
        assert "ghost" in names
        run_async(names.get("ghost"))
        assert source.display_names.await_count == 1

    def test_resolve_all_batches_uncached_ids_once(self):
        source = _source({"a": "Alice", "b": "Bob", "c": "Carol"})
        names = NameResolver(source)
        run_async(names.get("a"))

        result = run_async(names.resolve_all(["a", "b", "c", "b"]))

        assert result == {"a": "Alice", "b": "Bob", "c": "Carol"}
        source.display_names.assert_awaited_with(["b", "c"])
        assert source.display_names.await_count == 2

    def test_resolve_all_fully_cached_makes_no_call(self):
        source = _source({"a": "Alice"})
        names = NameResolver(source)
        run_async(names.resolve_all(["a"]))
        run_async(names.resolve_all(["a"]))
        assert source.display_names.await_count == 1

    def test_cached_never_calls_source(self):
        source = _source({"a": "Alice"})
        names = NameResolver(source)
        assert names.cached("a") == ""
        source.display_names.assert_not_awaited()

    def test_fresh_resolver_sees_renames(self):
        table = {"a": "Old"}
        source = _source(table)
        run_async(NameResolver(source).get("a"))

        table["a"] = "New"
        assert run_async(NameResolver(source).get("a")) == "New"

    def test_overlapping_batches_only_ask_for_new_ids(self):
        source = _source({"A": "a", "B": "b", "C": "c"})
        names = NameResolver(source)

        run_async(names.resolve_all(["A", "B"]))
        run_async(names.resolve_all(["B", "C"]))

        assert [call.args[0] for call in source.display_names.await_args_list] == [["A", "B"], ["C"]]
