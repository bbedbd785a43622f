"""
Bounded diagnostic log of load events with burst detection.
"""

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from shared.logging import get_logger

from .models import LoadAction, LoadEvent

READINESS_KEY = "readiness"


@dataclass(frozen=True)
class Anomaly:
    """A burst flagged by the recorder."""
    kind: str
    key: str
    count: int
    window: float
    timestamp: float


@dataclass
class PatternReport:
    """Summary of recent load activity."""
    total_events: int
    readiness_commits: int
    loading_starts: int
    errors: int
    discards: int
    suspicious_patterns: List[str] = field(default_factory=list)


class EventRecorder:
    """Ring buffer of ``LoadEvent`` (oldest evicted first).

    After each record the sliding window is checked for readiness-commit
    bursts and repeated starts of the same key. Flags are logged and kept
    in ``anomalies``; they never influence loading.
    """

    def __init__(self,
                 capacity: int = 100,
                 anomaly_window: float = 10.0,
                 readiness_burst_threshold: int = 5,
                 load_burst_threshold: int = 3,
                 clock: Callable[[], float] = time.time):
        self.capacity = capacity
        self.anomaly_window = anomaly_window
        self.readiness_burst_threshold = readiness_burst_threshold
        self.load_burst_threshold = load_burst_threshold
        self.clock = clock
        self.logger = get_logger("loadcache.recorder")

        self._events: Deque[LoadEvent] = deque(maxlen=capacity)
        self.anomalies: Deque[Anomaly] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(self, key: str, action: LoadAction, detail: Optional[Dict[str, Any]] = None) -> LoadEvent:
        event = LoadEvent(timestamp=self.clock(), key=key, action=action, detail=dict(detail or {}))
        with self._lock:
            self._events.append(event)
            flagged = self._detect(event)
        for anomaly in flagged:
            self.logger.warning(
                "Suspicious load pattern",
                kind=anomaly.kind,
                key=anomaly.key,
                count=anomaly.count,
                window=anomaly.window,
            )
        return event

    def record_readiness(self, detail: Optional[Dict[str, Any]] = None) -> LoadEvent:
        return self.record(READINESS_KEY, LoadAction.READINESS, detail)

    def _detect(self, event: LoadEvent) -> List[Anomaly]:
        if event.action not in (LoadAction.READINESS, LoadAction.START):
            return []

        cutoff = event.timestamp - self.anomaly_window
        count = sum(
            1 for e in self._events
            if e.timestamp >= cutoff and e.action is event.action and e.key == event.key
        )

        if event.action is LoadAction.READINESS:
            threshold, kind = self.readiness_burst_threshold, "readiness_burst"
        else:
            threshold, kind = self.load_burst_threshold, "load_burst"

        if count <= threshold:
            return []
        anomaly = Anomaly(kind=kind, key=event.key, count=count, window=self.anomaly_window,
                          timestamp=event.timestamp)
        self.anomalies.append(anomaly)
        return [anomaly]

    def get_recent_events(self, window: float = 300.0) -> List[LoadEvent]:
        """Events newer than ``window`` seconds, oldest first."""
        cutoff = self.clock() - window
        with self._lock:
            return [event for event in self._events if event.timestamp > cutoff]

    def get_recent_anomalies(self, window: Optional[float] = None) -> List[Anomaly]:
        cutoff = self.clock() - (self.anomaly_window if window is None else window)
        with self._lock:
            return [anomaly for anomaly in self.anomalies if anomaly.timestamp > cutoff]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self.anomalies.clear()
        self.logger.info("Load events cleared")

    def __len__(self) -> int:
        return len(self._events)

    def analyze_patterns(self, window: float = 600.0) -> PatternReport:
        recent = self.get_recent_events(window)
        actions = Counter(event.action for event in recent)
        starts_per_key = Counter(event.key for event in recent if event.action is LoadAction.START)

        report = PatternReport(
            total_events=len(recent),
            readiness_commits=actions[LoadAction.READINESS],
            loading_starts=actions[LoadAction.START],
            errors=actions[LoadAction.ERROR],
            discards=actions[LoadAction.DISCARD],
        )

        if report.readiness_commits > self.readiness_burst_threshold:
            report.suspicious_patterns.append(f"High readiness changes: {report.readiness_commits}")
        if report.loading_starts > 20:
            report.suspicious_patterns.append(f"High loading activity: {report.loading_starts} loads")
        for key, count in sorted(starts_per_key.items()):
            if count > self.load_burst_threshold:
                report.suspicious_patterns.append(f"Repeated loads of {key}: {count}")
        if report.discards:
            report.suspicious_patterns.append(f"Discarded stale completions: {report.discards}")

        return report
