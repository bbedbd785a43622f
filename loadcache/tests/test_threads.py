"""
Unit tests for LoadCoordinator used from several threads, each with its own event loop.
"""

import asyncio
import threading
import time

import pytest

from loadcache.coordinator import LoadCoordinator
from loadcache.gate import Gate
from loadcache.models import EntryStatus
from loadcache.store import CacheStore
from loadcache.testing import ready_state


class SlowLoader:
    """Thread-safe call counter around an ``asyncio.sleep``; every call returns the same object."""

    def __init__(self, delay: float = 0.3):
        self.delay = delay
        self.calls = 0
        self.value = {"modules": ["mod-1", "mod-2"]}
        self._lock = threading.Lock()

    async def __call__(self):
        with self._lock:
            self.calls += 1
        await asyncio.sleep(self.delay)
        return self.value


class TestCrossThreadLoads:
    """Test cases for loads shared between event loops on different threads."""

    @pytest.fixture
    def store(self):
        return CacheStore(default_ttl=60.0)

    @pytest.fixture
    def coordinator(self, store):
        gate = Gate()
        gate.update(ready_state())
        return LoadCoordinator(store, gate)

    def run_in_threads(self, coordinator, loader, count, stagger=0.0, barrier=None):
        results = []
        errors = []
        lock = threading.Lock()

        def worker():
            if barrier is not None:
                barrier.wait()
            try:
                value = asyncio.run(coordinator.request_load("modules", loader))
            except BaseException as exc:
                with lock:
                    errors.append(exc)
            else:
                with lock:
                    results.append(value)

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for thread in threads:
            thread.start()
            if stagger:
                time.sleep(stagger)
        for thread in threads:
            thread.join(timeout=5.0)
        return results, errors

    def test_staggered_threads_join_one_load(self, coordinator, store):
        loader = SlowLoader()

        results, errors = self.run_in_threads(coordinator, loader, count=2, stagger=0.05)

        assert errors == []
        assert loader.calls == 1
        assert len(results) == 2
        assert all(result is loader.value for result in results)
        assert store.get_entry("modules").status is EntryStatus.LOADED

    def test_racing_threads_claim_the_key_once(self, coordinator, store):
        loader = SlowLoader()
        barrier = threading.Barrier(4)

        results, errors = self.run_in_threads(coordinator, loader, count=4, barrier=barrier)

        assert errors == []
        assert loader.calls == 1
        assert len(results) == 4
        assert all(result is results[0] for result in results)
        assert store.get_in_flight("modules") is None
        assert coordinator.running_loads == 0

    def test_cancel_from_another_thread(self, coordinator, store):
        loader = SlowLoader(delay=5.0)
        outcome = {}

        def worker():
            try:
                asyncio.run(coordinator.request_load("modules", loader))
            except asyncio.CancelledError:
                outcome["cancelled"] = True

        thread = threading.Thread(target=worker)
        thread.start()
        deadline = time.monotonic() + 2.0
        while store.get_in_flight("modules") is None and time.monotonic() < deadline:
            time.sleep(0.01)

        assert coordinator.cancel("modules") is True
        thread.join(timeout=2.0)

        assert outcome == {"cancelled": True}
        assert not thread.is_alive()
        assert store.get_entry("modules").status is EntryStatus.IDLE
        assert coordinator.running_loads == 0

    @pytest.mark.asyncio
    async def test_async_caller_joins_load_claimed_on_another_thread(self, coordinator):
        loader = SlowLoader()
        claimed = threading.Event()
        results = []

        def worker():
            async def claim():
                pending = asyncio.ensure_future(coordinator.request_load("modules", loader))
                await asyncio.sleep(0.01)
                claimed.set()
                return await pending
            results.append(asyncio.run(claim()))

        thread = threading.Thread(target=worker)
        thread.start()
        await asyncio.get_running_loop().run_in_executor(None, claimed.wait, 2.0)

        joined = await coordinator.request_load("modules", loader)
        await asyncio.get_running_loop().run_in_executor(None, thread.join, 2.0)

        assert loader.calls == 1
        assert joined is loader.value
        assert results == [loader.value]
