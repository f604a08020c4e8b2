"""Unit tests for the in-process metrics."""

import math

from mantra_pair.monitoring import metrics
from mantra_pair.monitoring.metrics import Counter, Histogram


class TestCounter:
    def test_labels_are_separate_series(self):
        counter = Counter("c", "help")
        counter.inc(outcome="exported")
        counter.inc(outcome="exported")
        counter.inc(outcome="failed")

        assert counter.get(outcome="exported") == 2.0
        assert counter.get(outcome="terminated") == 0.0
        assert counter.by_label("outcome") == {"exported": 2.0, "failed": 1.0}


class TestHistogram:
    def test_count_sum_and_buckets(self):
        hist = Histogram("h", "help", buckets=[1.0, 10.0])
        for value in (0.5, 3.0, 7.0, 42.0):
            hist.observe(value)

        summary = hist.summary()
        assert summary["count"] == 4
        assert summary["sum"] == 52.5
        assert summary["buckets"] == {"1.0": 1, "10.0": 2, str(math.inf): 1}

    def test_empty_summary(self):
        assert Histogram("h", "help", buckets=[1.0]).summary() == {"count": 0, "sum": 0.0, "buckets": {}}


def test_snapshot_reports_session_duration():
    before = metrics.pairing_session_duration_seconds.summary()["count"]
    metrics.pairing_session_duration_seconds.observe(12.0)

    duration = metrics.snapshot()["sessionDuration"]
    assert duration["count"] == before + 1
    assert duration["sum"] >= 12.0
