"""
Unit tests for diagnostics and the load monitor.
"""

import pytest

from loadcache.diagnostics import diagnose, dump
from loadcache.gate import Gate
from loadcache.invalidator import Invalidator
from loadcache.monitor import LoadMonitor
from loadcache.store import CacheStore
from loadcache.testing import FakeClock, ready_state, signed_out_state, transient


class TestDiagnostics:
    """Test cases for dump and diagnose."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return CacheStore(default_ttl=60.0, clock=clock)

    @pytest.fixture
    def gate(self):
        gate = Gate()
        gate.update(ready_state())
        return gate

    def _load(self, store, key, data):
        generation = store.transition_to_loading(key, object())
        store.commit_loaded(key, data, generation)

    def test_dump_rows(self, store, clock):
        self._load(store, "modules", [1, 2])
        clock.advance(12.3456)
        store.get_entry("units")

        rows = {row["key"]: row for row in dump(store)}

        assert rows["modules"]["status"] == "loaded"
        assert rows["modules"]["age"] == 12.346
        assert rows["modules"]["has_data"] is True
        assert rows["units"]["status"] == "idle"
        assert rows["units"]["age"] is None
        assert rows["units"]["generation"] == 0

    def test_healthy_store_has_no_issues(self, store, gate):
        self._load(store, "modules", [1])

        report = diagnose(store, gate)

        assert report.issues == []
        assert report.recommendations == []
        assert report.readiness["principal_id"] == "user-admin"
        assert report.cache_status["modules"]["status"] == "loaded"

    def test_repeated_failures_flag_network_error(self, store, gate):
        for _ in range(4):
            generation = store.transition_to_loading("modules", object())
            store.commit_error("modules", transient("timeout"), generation)

        report = diagnose(store, gate)

        issue = next(issue for issue in report.issues if issue.type == "network-error")
        assert issue.key == "modules"
        assert issue.severity == "high"
        assert report.has_high_severity is True
        assert "Inspect loader errors and backend health" in report.recommendations

    def test_reset_entry_flagged(self, store, gate):
        self._load(store, "modules", [1])
        Invalidator(store).reset("modules")

        report = diagnose(store, gate)

        assert [(i.type, i.severity) for i in report.issues] == [("store-reset", "medium")]

    def test_old_entry_flagged_stale(self, store, gate, clock):
        self._load(store, "modules", [1])
        clock.advance(700.0)

        report = diagnose(store, gate, stale_after=600.0)

        assert [i.type for i in report.issues] == ["cache-stale"]
        assert report.recommendations == ["Expire entries older than the stale threshold"]

    def test_data_without_principal_is_auth_mismatch(self, store, gate):
        self._load(store, "modules", [1])
        gate.update(signed_out_state())

        report = diagnose(store, gate)

        assert [(i.type, i.key) for i in report.issues] == [("auth-mismatch", "*")]
        assert report.recommendations == [
            "Address high severity load issues first",
            "Call reset_all() on session change",
        ]

    def test_diagnose_does_not_mutate(self, store, gate, clock):
        self._load(store, "modules", [1])
        clock.advance(700.0)
        before = dump(store)

        diagnose(store, gate)

        assert dump(store) == before


class TestLoadMonitor:
    """Test cases for LoadMonitor."""

    @pytest.fixture
    def monitor(self):
        return LoadMonitor()

    def test_record_load_accumulates(self, monitor):
        monitor.record_load("modules", 0.2, success=True)
        monitor.record_load("modules", 0.4, success=False)

        stats = monitor.get_metrics("modules")
        assert stats["load_count"] == 2
        assert stats["error_count"] == 1
        assert stats["last_load_time"] == 0.4
        assert stats["average_load_time"] == pytest.approx(0.3)
        assert monitor.get_metrics("missing") is None

    def test_performance_report(self, monitor):
        monitor.record_load("modules", 2.0, success=True)
        monitor.record_load("units", 0.1, success=False)
        monitor.record_load("agents", 0.5, success=True)

        report = monitor.performance_report(top=2)

        assert report.slowest == ["modules", "agents"]
        assert report.most_errors == ["units"]
        assert report.recommendations == [
            "Optimize loading for: modules, agents",
            "Investigate errors in: units",
        ]

    def test_reset(self, monitor):
        monitor.record_load("modules", 1.0, success=True)
        monitor.reset()

        assert monitor.get_metrics() == {}
        assert monitor.performance_report().recommendations == []
