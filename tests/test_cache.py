"""Tests for the per-directory discovery cache."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from tagres import DirectoryDiscovery, DiscoveryCache


def discovery(directory: Path, *watched: Path) -> DirectoryDiscovery:
    return DirectoryDiscovery(directory=directory, watched=tuple(watched))


class TestSingleFlight:
    def test_concurrent_requests_compute_once(self):
        cache = DiscoveryCache()
        directory = Path("/proj/src")
        calls = []
        lock = threading.Lock()

        def compute():
            with lock:
                calls.append(1)
            time.sleep(0.1)
            return discovery(directory)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: cache.get_or_compute(directory, compute), range(8)))

        assert len(calls) == 1
        assert all(r is results[0] for r in results)

    def test_cached_result_reused(self):
        cache = DiscoveryCache()
        first = cache.get_or_compute(Path("/a"), lambda: discovery(Path("/a")))
        second = cache.get_or_compute(Path("/a"), lambda: pytest.fail("recomputed"))
        assert first is second
        assert len(cache) == 1

    def test_failures_not_cached(self):
        cache = DiscoveryCache()

        def boom():
            raise RuntimeError("load failed")

        with pytest.raises(RuntimeError):
            cache.get_or_compute(Path("/a"), boom)
        assert Path("/a") not in cache

        result = cache.get_or_compute(Path("/a"), lambda: discovery(Path("/a")))
        assert result.directory == Path("/a")

    def test_waiters_see_failure(self):
        cache = DiscoveryCache()
        started = threading.Event()

        def slow_boom():
            started.set()
            time.sleep(0.1)
            raise RuntimeError("load failed")

        with ThreadPoolExecutor(max_workers=2) as pool:
            owner = pool.submit(cache.get_or_compute, Path("/a"), slow_boom)
            started.wait()
            waiter = pool.submit(cache.get_or_compute, Path("/a"), lambda: discovery(Path("/a")))

            with pytest.raises(RuntimeError):
                owner.result()
            with pytest.raises(RuntimeError):
                waiter.result()


class TestInvalidation:
    def test_invalidate(self):
        cache = DiscoveryCache()
        cache.get_or_compute(Path("/a"), lambda: discovery(Path("/a")))

        assert cache.invalidate(Path("/a")) is True
        assert cache.invalidate(Path("/a")) is False
        assert Path("/a") not in cache

    def test_invalidate_path_by_watched_file(self):
        cache = DiscoveryCache()
        cache.get_or_compute(
            Path("/proj"), lambda: discovery(Path("/proj"), Path("/proj/marko-taglib.json"))
        )
        cache.get_or_compute(
            Path("/proj/src"),
            lambda: discovery(Path("/proj/src"), Path("/proj/src/marko-taglib.json")),
        )

        assert cache.invalidate_path(Path("/proj/marko-taglib.json")) == [Path("/proj")]
        assert Path("/proj/src") in cache

    def test_invalidate_path_inside_watched_directory(self):
        cache = DiscoveryCache()
        cache.get_or_compute(
            Path("/proj"), lambda: discovery(Path("/proj"), Path("/proj/components"))
        )
        dropped = cache.invalidate_path(Path("/proj/components/new-tag/renderer.py"))
        assert dropped == [Path("/proj")]

    def test_unrelated_change_keeps_entries(self):
        cache = DiscoveryCache()
        cache.get_or_compute(
            Path("/proj"), lambda: discovery(Path("/proj"), Path("/proj/marko-taglib.json"))
        )
        assert cache.invalidate_path(Path("/proj/src/page.marko")) == []
        assert len(cache) == 1

    def test_clear(self):
        cache = DiscoveryCache()
        cache.get_or_compute(Path("/a"), lambda: discovery(Path("/a")))
        cache.get_or_compute(Path("/b"), lambda: discovery(Path("/b")))
        cache.clear()
        assert len(cache) == 0
