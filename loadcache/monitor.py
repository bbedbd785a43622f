"""
Per-key load performance statistics.
"""

import threading
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass
class LoadStats:
    load_count: int = 0
    error_count: int = 0
    total_load_time: float = 0.0
    last_load_time: float = 0.0
    average_load_time: float = 0.0


@dataclass
class PerformanceReport:
    slowest: List[str] = field(default_factory=list)
    most_errors: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


class LoadMonitor:
    """Accumulates load durations and failures per key."""

    def __init__(self):
        self._stats: Dict[str, LoadStats] = {}
        self._lock = threading.Lock()

    def record_load(self, key: str, duration: float, success: bool) -> None:
        with self._lock:
            stats = self._stats.setdefault(key, LoadStats())
            stats.load_count += 1
            stats.total_load_time += duration
            stats.last_load_time = duration
            stats.average_load_time = stats.total_load_time / stats.load_count
            if not success:
                stats.error_count += 1

    def get_metrics(self, key: Optional[str] = None) -> Any:
        with self._lock:
            if key is not None:
                stats = self._stats.get(key)
                return asdict(stats) if stats else None
            return {name: asdict(stats) for name, stats in self._stats.items()}

    def performance_report(self, top: int = 3) -> PerformanceReport:
        with self._lock:
            items = list(self._stats.items())

        slowest = [key for key, _ in sorted(items, key=lambda kv: kv[1].average_load_time, reverse=True)[:top]]
        most_errors = [
            key for key, stats in sorted(items, key=lambda kv: kv[1].error_count, reverse=True)
            if stats.error_count > 0
        ][:top]

        report = PerformanceReport(slowest=slowest, most_errors=most_errors)
        if slowest:
            report.recommendations.append(f"Optimize loading for: {', '.join(slowest)}")
        if most_errors:
            report.recommendations.append(f"Investigate errors in: {', '.join(most_errors)}")
        return report

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
