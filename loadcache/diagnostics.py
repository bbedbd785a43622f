"""
Read-only diagnosis of cache state for external tooling.

Nothing here mutates the store; fixes go through ``Invalidator``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .gate import Gate
from .models import EntryStatus
from .store import CacheStore

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"


@dataclass(frozen=True)
class DiagnosticIssue:
    type: str
    key: str
    description: str
    severity: str
    fix: str


@dataclass
class DiagnosticReport:
    issues: List[DiagnosticIssue] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    cache_status: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    readiness: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_high_severity(self) -> bool:
        return any(issue.severity == SEVERITY_HIGH for issue in self.issues)


def dump(store: CacheStore) -> List[Dict[str, Any]]:
    """One row per entry: status, age, retry count, generation."""
    return [snapshot.to_dict() for snapshot in store.snapshots()]


def diagnose(store: CacheStore, gate: Gate, stale_after: float = 600.0,
             failure_threshold: int = 3) -> DiagnosticReport:
    """Inspect every entry and the gate for known trouble patterns."""
    report = DiagnosticReport(readiness=gate.state.to_dict())
    snapshots = store.snapshots()

    for snapshot in snapshots:
        report.cache_status[snapshot.key] = snapshot.to_dict()

        if snapshot.error is not None and snapshot.retry_count > failure_threshold:
            report.issues.append(DiagnosticIssue(
                type="network-error",
                key=snapshot.key,
                description=f"{snapshot.key} has failed to load {snapshot.retry_count} times",
                severity=SEVERITY_HIGH,
                fix="Check network connectivity and backend availability",
            ))

        if snapshot.status is EntryStatus.IDLE and snapshot.generation > 0 and not snapshot.has_data:
            report.issues.append(DiagnosticIssue(
                type="store-reset",
                key=snapshot.key,
                description=f"{snapshot.key} has no data and is not loading",
                severity=SEVERITY_MEDIUM,
                fix="Data was reset and has not been reloaded",
            ))

        if snapshot.age is not None and snapshot.age > stale_after:
            report.issues.append(DiagnosticIssue(
                type="cache-stale",
                key=snapshot.key,
                description=f"{snapshot.key} was loaded {snapshot.age:.0f}s ago",
                severity=SEVERITY_LOW,
                fix="Invalidate old entries",
            ))

    state = gate.state
    if (state.initialized and not state.settling and state.principal is None
            and any(snapshot.has_data for snapshot in snapshots)):
        report.issues.append(DiagnosticIssue(
            type="auth-mismatch",
            key="*",
            description="No principal is settled but data is cached",
            severity=SEVERITY_HIGH,
            fix="Reset all entries when the session ends",
        ))

    if report.has_high_severity:
        report.recommendations.append("Address high severity load issues first")
    if any(issue.type == "network-error" for issue in report.issues):
        report.recommendations.append("Inspect loader errors and backend health")
    if any(issue.type == "cache-stale" for issue in report.issues):
        report.recommendations.append("Expire entries older than the stale threshold")
    if any(issue.type == "auth-mismatch" for issue in report.issues):
        report.recommendations.append("Call reset_all() on session change")

    return report
