"""
Singleflight load coordination over a ``CacheStore``.

One loader invocation per key at a time: the first caller on a miss claims
the key and starts a load task, later callers join that task. All joined
callers see the same value or the same exception.

The handle stored on the entry is a ``concurrent.futures.Future`` completed
by the load task, so callers running their own event loop on another thread
can join a load claimed elsewhere.
"""

import asyncio
import concurrent.futures
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from shared.errors import LoadFailedError, RefusedError, StaleCompletionDiscard
from shared.logging import get_logger, set_request_id
from shared.metrics import MetricsCollector
from shared.retry import RetryPolicy

from .gate import Gate
from .models import EntryStatus, LoadAction, LoadOptions
from .monitor import LoadMonitor
from .recorder import EventRecorder
from .store import CacheStore

Loader = Callable[[], Awaitable[Any]]
Handle = concurrent.futures.Future


class LoadCoordinator:
    """Freshness check, gate check, dedup and commit for ``request_load``."""

    def __init__(self,
                 store: CacheStore,
                 gate: Gate,
                 retry_policy: Optional[RetryPolicy] = None,
                 *,
                 recorder: Optional[EventRecorder] = None,
                 monitor: Optional[LoadMonitor] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.gate = gate
        self.retry_policy = retry_policy or RetryPolicy()
        self.recorder = recorder
        self.monitor = monitor
        self.metrics = metrics
        self.logger = get_logger("loadcache.coordinator")

        # every load started here, detached ones included, until its task finishes
        self._loads: Dict[Handle, Tuple[asyncio.AbstractEventLoop, asyncio.Task]] = {}

    async def request_load(self,
                           key: str,
                           loader: Loader,
                           options: Optional[LoadOptions] = None,
                           **overrides) -> Any:
        """
        Return data for ``key``, loading it through ``loader`` if needed.

        Safe to call from several threads, each with its own event loop.

        Raises:
            RefusedError: the gate refused a real fetch (entry untouched)
            LoadFailedError: the key failed recently and has no data to serve
            Exception: the loader's final error, shared by all joined callers
        """
        opts = options or LoadOptions()
        if overrides:
            opts = replace(opts, **overrides)

        with self.store.lock:
            snapshot = self.store.get_entry(key)

            if not opts.force_refresh:
                if snapshot.status is EntryStatus.LOADED and not self.store.is_stale(key, opts.ttl):
                    self._count_hit("fresh")
                    return snapshot.data

                if self.store.is_failure_held(key, opts.ttl):
                    self._count_hit("failed_hold")
                    if snapshot.data is not None:
                        return snapshot.data
                    raise LoadFailedError(key, snapshot.error, snapshot.retry_count)

            handle = self.store.get_in_flight(key)
            if handle is not None:
                self._count_hit("joined")
                self.logger.debug("Joining in-flight load", key=key, generation=snapshot.generation)
            else:
                decision = self.gate.can_load()
                if not decision.allowed:
                    self._refused(key, decision.reason)
                    raise RefusedError(key, decision.reason)
                handle = self._claim(key, loader, opts, snapshot.generation)

        # shield: a caller abandoning its wait must not cancel the shared load
        return await asyncio.shield(asyncio.wrap_future(handle))

    def _claim(self, key: str, loader: Loader, opts: LoadOptions, generation: int) -> Handle:
        loop = asyncio.get_running_loop()
        handle: Handle = concurrent.futures.Future()
        task = loop.create_task(self._run_load(key, loader, opts, generation, handle))
        task.add_done_callback(lambda done: self._on_done(key, handle, done))
        self._loads[handle] = (loop, task)
        self.store.transition_to_loading(key, handle, ttl=opts.ttl)
        self._update_in_flight_gauge()
        return handle

    async def _run_load(self, key: str, loader: Loader, opts: LoadOptions, generation: int,
                        handle: Handle) -> Any:
        # the task runs in its own copy of the context, so the id tags only this load
        request_id = set_request_id()
        started = time.perf_counter()
        self._record(key, LoadAction.START, {
            "generation": generation,
            "force_refresh": opts.force_refresh,
            "request_id": request_id,
        })
        self.logger.debug("Load started", key=key, generation=generation)

        try:
            data = await self.retry_policy.execute(loader, opts.max_retries, opts.base_delay)
        except asyncio.CancelledError:
            self.store.abort_loading(key, handle)
            self._record(key, LoadAction.ERROR, {"error": "cancelled", "generation": generation})
            self.logger.info("Load cancelled", key=key, generation=generation)
            raise
        except Exception as exc:
            duration = time.perf_counter() - started
            self._finished(key, duration, success=False)
            if self.store.commit_error(key, exc, generation):
                self._record(key, LoadAction.ERROR, {
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "duration": duration,
                })
                self.logger.warning("Load failed", key=key, error=str(exc), duration=duration)
            else:
                self._discard(key, generation, "error")
            raise

        duration = time.perf_counter() - started
        self._finished(key, duration, success=True)
        if self.store.commit_loaded(key, data, generation):
            self._record(key, LoadAction.END, {"duration": duration, "generation": generation})
            self.logger.debug("Load completed", key=key, duration=duration)
        else:
            self._discard(key, generation, "success")
        return data

    def _on_done(self, key: str, handle: Handle, task: asyncio.Task) -> None:
        with self.store.lock:
            self._loads.pop(handle, None)

        if task.cancelled():
            # covers tasks cancelled before their first step ran
            self.store.abort_loading(key, handle)
            handle.cancel()
        elif handle.done():
            # retrieve so the abandoned task does not warn about an unretrieved error
            task.exception()
        elif task.exception() is not None:
            handle.set_exception(task.exception())
        else:
            handle.set_result(task.result())
        self._update_in_flight_gauge()

    def cancel(self, key: str) -> bool:
        """Cancel the in-flight load of ``key``; the entry returns to a terminal state."""
        with self.store.lock:
            handle = self.store.get_in_flight(key)
            load = self._loads.get(handle) if handle is not None else None
        if load is None or handle.done():
            return False
        self._cancel_task(*load)
        return True

    async def close(self) -> None:
        """Cancel every load still running, detached ones included, and wait for them to unwind."""
        with self.store.lock:
            loads = list(self._loads.items())

        waiting = []
        for handle, (loop, task) in loads:
            if loop.is_closed():
                continue
            self._cancel_task(loop, task)
            waiting.append(asyncio.shield(asyncio.wrap_future(handle)))
        if waiting:
            await asyncio.gather(*waiting, return_exceptions=True)

    @property
    def running_loads(self) -> int:
        """Load tasks not yet finished, detached ones included."""
        with self.store.lock:
            return len(self._loads)

    @staticmethod
    def _cancel_task(loop: asyncio.AbstractEventLoop, task: asyncio.Task) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if loop is running:
            task.cancel()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(task.cancel)

    def _discard(self, key: str, generation: int, outcome: str) -> None:
        current = self.store.get_entry(key).generation
        discard = StaleCompletionDiscard(key, generation, current, outcome)
        self._record(key, LoadAction.DISCARD, discard.to_detail())
        if self.metrics:
            self.metrics.increment_counter("discarded_completions_total")
        self.logger.info(
            "Discarded stale completion",
            key=key,
            captured_generation=generation,
            current_generation=current,
            outcome=outcome,
        )

    def _refused(self, key: str, reason: str) -> None:
        self._record(key, LoadAction.REFUSED, {"reason": reason})
        if self.metrics:
            self.metrics.increment_counter("refusals_total", reason=reason)
        self.logger.info("Load refused by gate", key=key, reason=reason)

    def _finished(self, key: str, duration: float, success: bool) -> None:
        result = "success" if success else "error"
        if self.monitor:
            self.monitor.record_load(key, duration, success)
        if self.metrics:
            self.metrics.increment_counter("loads_total", result=result)
            self.metrics.observe_histogram("load_duration_seconds", duration, result=result)

    def _count_hit(self, kind: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_hits_total", kind=kind)

    def _record(self, key: str, action: LoadAction, detail: dict) -> None:
        if self.recorder:
            self.recorder.record(key, action, detail)

    def _update_in_flight_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("in_flight_loads", len(self.store.in_flight_handles()))
