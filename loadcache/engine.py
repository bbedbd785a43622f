"""
Public entry point wiring store, gate, coordinator and diagnostics together.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from prometheus_client import CollectorRegistry

from shared.config import EngineConfig, get_config
from shared.errors import CacheEngineError
from shared.logging import configure_logging, get_logger, set_principal_context
from shared.metrics import get_metrics_collector
from shared.retry import RetryConfig, RetryPolicy

from .coordinator import LoadCoordinator, Loader
from .debounce import DebouncedStateReducer, Enricher
from .diagnostics import DiagnosticReport, diagnose, dump
from .gate import Gate, GateDecision, Predicate
from .invalidator import Invalidator
from .models import EntrySnapshot, LoadEvent, LoadOptions, ReadinessState
from .monitor import LoadMonitor, PerformanceReport
from .recorder import EventRecorder, PatternReport
from .store import CacheStore, Subscriber


class LoadEngine:
    """Cache and load-coordination engine.

    One instance per session layer; construct it, feed it readiness events,
    and ``close()`` it (or use ``async with``) on teardown.

    Usage:
        async with LoadEngine(predicate=role_predicate("Admin")) as engine:
            engine.on_readiness_event(ReadinessState(True, False, principal))
            modules = await engine.get("modules", fetch_modules)
    """

    def __init__(self,
                 config: Optional[EngineConfig] = None,
                 *,
                 predicate: Optional[Predicate] = None,
                 enrich: Optional[Enricher] = None,
                 clock: Callable[[], float] = time.monotonic,
                 event_clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Any] = asyncio.sleep,
                 registry: Optional[CollectorRegistry] = None):
        self.config = config or get_config()
        self.logger = get_logger("loadcache.engine")
        self.metrics = get_metrics_collector(self.config.service_name, registry)

        self.store = CacheStore(default_ttl=self.config.default_ttl, clock=clock)
        self.gate = Gate(predicate, fail_open=self.config.gate_fail_open)
        self.retry_policy = RetryPolicy(
            RetryConfig(
                max_attempts=self.config.max_retries,
                base_delay=self.config.base_delay,
                max_delay=self.config.max_delay,
                jitter=self.config.retry_jitter,
            ),
            sleep=sleep,
            metrics=self.metrics,
        )
        self.recorder = EventRecorder(
            capacity=self.config.event_capacity,
            anomaly_window=self.config.anomaly_window,
            readiness_burst_threshold=self.config.readiness_burst_threshold,
            load_burst_threshold=self.config.load_burst_threshold,
            clock=event_clock,
        )
        self.monitor = LoadMonitor()
        self.coordinator = LoadCoordinator(
            self.store,
            self.gate,
            self.retry_policy,
            recorder=self.recorder,
            monitor=self.monitor,
            metrics=self.metrics,
        )
        self.invalidator = Invalidator(self.store)
        self.reducer = DebouncedStateReducer(
            self._on_readiness_commit,
            delay=self.config.debounce_delay,
            enrich=enrich,
        )
        self._closed = False

    @classmethod
    def from_config(cls, config: Optional[EngineConfig] = None, **kwargs) -> "LoadEngine":
        """Build an engine and configure structured logging from ``config``."""
        config = config or get_config()
        configure_logging(config.service_name, config.log_level)
        return cls(config, **kwargs)

    async def __aenter__(self) -> "LoadEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def get(self,
                  key: str,
                  loader: Loader,
                  *,
                  force_refresh: bool = False,
                  ttl: Optional[float] = None,
                  max_retries: Optional[int] = None,
                  base_delay: Optional[float] = None) -> Any:
        """Cached data for ``key``, fetched through ``loader`` on a miss."""
        if self._closed:
            raise CacheEngineError("ENGINE_CLOSED", "Load engine is closed", {"key": key})
        options = LoadOptions(
            force_refresh=force_refresh,
            ttl=ttl,
            max_retries=max_retries,
            base_delay=base_delay,
        )
        return await self.coordinator.request_load(key, loader, options)

    def cancel(self, key: str) -> bool:
        return self.coordinator.cancel(key)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, key: str) -> bool:
        """Force the next ``get`` of ``key`` to refetch; current data stays visible."""
        return self.invalidator.force_refresh(key)

    def invalidate_all(self) -> List[str]:
        return self.invalidator.force_refresh_all()

    def expire_older_than(self, max_age: Optional[float] = None) -> List[str]:
        return self.invalidator.expire_older_than(self.config.stale_after if max_age is None else max_age)

    def reset(self, key: str) -> bool:
        return self.invalidator.reset(key)

    def reset_all(self) -> int:
        return self.invalidator.reset_all(reason="explicit")

    def clear_error(self, key: str) -> bool:
        return self.invalidator.clear_error(key)

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def on_readiness_event(self, state: ReadinessState) -> None:
        """Feed a raw readiness change; bursts are debounced into one commit."""
        self.reducer.on_event(state)

    async def settle(self, state: ReadinessState) -> Optional[ReadinessState]:
        """Commit ``state`` immediately, skipping the quiet period."""
        self.reducer.cancel()
        return await self.reducer.commit(state)

    def _on_readiness_commit(self, state: ReadinessState) -> None:
        previous = self.gate.state
        self.gate.update(state)
        set_principal_context(state.principal_id)
        self.recorder.record_readiness(state.to_dict())
        self.metrics.increment_counter("readiness_commits_total")

        if previous.principal_id != state.principal_id:
            self.logger.info(
                "Principal changed; resetting cache",
                previous_principal=previous.principal_id,
                principal_id=state.principal_id,
            )
            self.invalidator.reset_all(reason="principal_changed")

    @property
    def readiness(self) -> ReadinessState:
        return self.gate.state

    def can_load(self) -> GateDecision:
        return self.gate.can_load()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def peek(self, key: str) -> EntrySnapshot:
        return self.store.peek(key)

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """Observe transitions of ``key``, or of every key with ``"*"``."""
        return self.store.subscribe(key, callback)

    def is_any_loading(self) -> bool:
        return self.store.is_any_loading()

    def get_recent_events(self, window: float = 300.0) -> List[LoadEvent]:
        return self.recorder.get_recent_events(window)

    def analyze_patterns(self, window: float = 600.0) -> PatternReport:
        return self.recorder.analyze_patterns(window)

    def performance_report(self, top: int = 3) -> PerformanceReport:
        return self.monitor.performance_report(top)

    def dump(self) -> List[Dict[str, Any]]:
        return dump(self.store)

    def diagnose(self) -> DiagnosticReport:
        return diagnose(self.store, self.gate, stale_after=self.config.stale_after)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Cancel the debounce timer and every in-flight load."""
        if self._closed:
            return
        self._closed = True
        await self.reducer.close()
        await self.coordinator.close()
        self.logger.info("Load engine closed", entries=len(self.store))
