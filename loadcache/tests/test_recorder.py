"""
Unit tests for EventRecorder.
"""

import pytest

from loadcache.models import LoadAction
from loadcache.recorder import READINESS_KEY, EventRecorder
from loadcache.testing import FakeClock


class TestEventRecorder:
    """Test cases for EventRecorder."""

    @pytest.fixture
    def clock(self):
        return FakeClock(start=50_000.0)

    @pytest.fixture
    def recorder(self, clock):
        """Create EventRecorder instance."""
        return EventRecorder(clock=clock)

    def test_capacity_evicts_oldest(self, recorder, clock):
        """150 events leave the most recent 100."""
        for n in range(150):
            recorder.record(f"key-{n}", LoadAction.END)
            clock.advance(0.001)

        events = recorder.get_recent_events()
        assert len(recorder) == 100
        assert len(events) == 100
        assert events[0].key == "key-50"
        assert events[-1].key == "key-149"

    def test_recent_events_window(self, recorder, clock):
        recorder.record("old", LoadAction.START)
        clock.advance(400.0)
        recorder.record("new", LoadAction.START)

        assert [e.key for e in recorder.get_recent_events()] == ["new"]
        assert [e.key for e in recorder.get_recent_events(window=1000.0)] == ["old", "new"]

    def test_event_detail_is_copied(self, recorder):
        detail = {"generation": 1}
        event = recorder.record("modules", LoadAction.START, detail)
        detail["generation"] = 2

        assert event.detail == {"generation": 1}
        assert event.to_dict()["action"] == "start"

    def test_readiness_burst_is_flagged(self, recorder, clock):
        for n in range(6):
            recorder.record_readiness({"n": n})
            clock.advance(0.5)

        anomalies = recorder.get_recent_anomalies()
        assert len(anomalies) == 1
        assert anomalies[0].kind == "readiness_burst"
        assert anomalies[0].key == READINESS_KEY
        assert anomalies[0].count == 6

    def test_spread_out_readiness_is_not_flagged(self, recorder, clock):
        for _ in range(10):
            recorder.record_readiness()
            clock.advance(5.0)

        assert list(recorder.anomalies) == []

    def test_repeated_starts_of_one_key_are_flagged(self, recorder, clock):
        for _ in range(4):
            recorder.record("modules", LoadAction.START)
            recorder.record("units", LoadAction.START)
            clock.advance(1.0)

        kinds = {(a.kind, a.key) for a in recorder.anomalies}
        assert kinds == {("load_burst", "modules"), ("load_burst", "units")}

    def test_analyze_patterns(self, recorder):
        for _ in range(6):
            recorder.record_readiness()
        for _ in range(4):
            recorder.record("modules", LoadAction.START)
        recorder.record("modules", LoadAction.ERROR, {"error": "x"})
        recorder.record("modules", LoadAction.DISCARD)

        report = recorder.analyze_patterns()

        assert report.total_events == 12
        assert report.readiness_commits == 6
        assert report.loading_starts == 4
        assert report.errors == 1
        assert report.discards == 1
        assert report.suspicious_patterns == [
            "High readiness changes: 6",
            "Repeated loads of modules: 4",
            "Discarded stale completions: 1",
        ]

    def test_analyze_quiet_period(self, recorder):
        recorder.record("modules", LoadAction.START)
        recorder.record("modules", LoadAction.END)

        assert recorder.analyze_patterns().suspicious_patterns == []

    def test_clear(self, recorder):
        for _ in range(6):
            recorder.record_readiness()

        recorder.clear()

        assert len(recorder) == 0
        assert recorder.get_recent_anomalies() == []
