# ruff: noqa: E402
"""Property-based tests for the configuration cache."""

import threading

import pytest

hypothesis = pytest.importorskip("hypothesis")
from hypothesis import given, settings, strategies as st

from portico.config import ConfigStore

keys = st.text(alphabet="abcdef", min_size=1, max_size=3)


@given(
    st.dictionaries(keys, st.integers()),
    st.dictionaries(keys, st.integers()),
    st.lists(keys),
)
def test_update_matches_dict_semantics(initial, changed, removed):
    """Changed keys are visible and removed keys fall back to the default."""
    store = ConfigStore()
    store.create("Endpoint", initial)
    store.update("Endpoint", changed, removed)
    expected = {**initial, **changed}
    for key in removed:
        expected.pop(key, None)
    assert store.snapshot("Endpoint") == expected
    for key in set(initial) | set(changed) | set(removed):
        assert store.get("Endpoint", key, "absent") == expected.get(key, "absent")


@settings(deadline=None, max_examples=25)
@given(st.integers(min_value=1, max_value=6), st.integers(min_value=0, max_value=3))
def test_cache_computes_once_between_updates(readers, updates):
    """Each invalidation allows exactly one more computation."""
    store = ConfigStore()
    store.create("Endpoint", {})
    calls = []
    lock = threading.Lock()

    def compute() -> int:
        with lock:
            calls.append(1)
        return len(calls)

    for round_ in range(updates + 1):
        threads = [
            threading.Thread(target=store.cache, args=("Endpoint", "k", compute))
            for _ in range(readers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(calls) == round_ + 1
        store.update("Endpoint", {"round": round_})
