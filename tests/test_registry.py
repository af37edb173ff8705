"""
Shared parameter registry tests.
"""
import threading

import pytest

from pythonsumma import SHARED_PARAMS, ParamsRegistry


class TestParamsRegistry:
    def test_built_once_and_shared(self):
        registry = ParamsRegistry()
        calls = []

        def factory():
            calls.append(1)
            return object()

        first = registry.acquire("srs-9", factory)
        second = registry.acquire("srs-9", factory)
        assert first is second
        assert len(calls) == 1
        assert registry.refcount("srs-9") == 2

    def test_dropped_after_last_release(self):
        registry = ParamsRegistry()
        registry.acquire("k", lambda: "value")
        registry.acquire("k", lambda: "other")
        registry.release("k")
        assert "k" in registry
        registry.release("k")
        assert "k" not in registry
        assert registry.refcount("k") == 0
        assert registry.acquire("k", lambda: "rebuilt") == "rebuilt"

    def test_release_unknown_key(self):
        with pytest.raises(KeyError):
            ParamsRegistry().release("missing")

    def test_borrow(self):
        registry = ParamsRegistry()
        with registry.borrow("k", lambda: [1, 2]) as value:
            assert value == [1, 2]
            assert registry.refcount("k") == 1
        assert "k" not in registry

    def test_borrow_releases_on_error(self):
        registry = ParamsRegistry()
        with pytest.raises(RuntimeError):
            with registry.borrow("k", lambda: 1):
                raise RuntimeError("boom")
        assert registry.refcount("k") == 0

    def test_concurrent_acquire_builds_once(self):
        registry = ParamsRegistry()
        calls = []
        barrier = threading.Barrier(8)
        results = []

        def factory():
            calls.append(1)
            return object()

        def worker():
            barrier.wait()
            results.append(registry.acquire("shared", factory))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert len({id(r) for r in results}) == 1
        assert registry.refcount("shared") == 8

    def test_clear(self):
        registry = ParamsRegistry()
        registry.acquire("a", lambda: 1)
        registry.clear()
        assert "a" not in registry

    def test_process_wide_instance(self):
        assert isinstance(SHARED_PARAMS, ParamsRegistry)
