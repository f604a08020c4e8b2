from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

LabelKey = Tuple[Tuple[str, Any], ...]


def _key(labels: Dict[str, Any]) -> LabelKey:
    return tuple(sorted(labels.items()))


@dataclass
class Counter:
    name: str
    help: str
    values: Dict[LabelKey, float] = field(default_factory=dict)

    def inc(self, value: float = 1.0, **labels: Any) -> None:
        key = _key(labels)
        self.values[key] = self.values.get(key, 0.0) + value

    def get(self, **labels: Any) -> float:
        return self.values.get(_key(labels), 0.0)

    def by_label(self, label: str) -> Dict[str, float]:
        return {str(dict(key).get(label, "")): value for key, value in self.values.items()}


@dataclass
class HistogramSeries:
    counts: List[int]
    count: int = 0
    total: float = 0.0


@dataclass
class Histogram:
    """Bucketed observations; values past the last bound land in an overflow bucket."""

    name: str
    help: str
    buckets: List[float]
    series: Dict[LabelKey, HistogramSeries] = field(default_factory=dict)

    def observe(self, val: float, **labels: Any) -> None:
        key = _key(labels)
        if key not in self.series:
            self.series[key] = HistogramSeries(counts=[0] * (len(self.buckets) + 1))
        entry = self.series[key]
        entry.count += 1
        entry.total += val
        for i, bound in enumerate(self.buckets):
            if val <= bound:
                entry.counts[i] += 1
                break
        else:
            entry.counts[-1] += 1

    def summary(self, **labels: Any) -> Dict[str, Any]:
        entry = self.series.get(_key(labels))
        if entry is None:
            return {"count": 0, "sum": 0.0, "buckets": {}}
        bounds = [str(b) for b in self.buckets] + [str(math.inf)]
        return {"count": entry.count, "sum": entry.total, "buckets": dict(zip(bounds, entry.counts))}


pairing_sessions_total = Counter("pairing_sessions_total", "Pairing sessions by outcome")
pairing_retries_total = Counter("pairing_retries_total", "Connection restarts after transient failures")
pairing_session_duration_seconds = Histogram(
    "pairing_session_duration_seconds",
    "Time from session creation to cleanup",
    buckets=[5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)


def snapshot() -> Dict[str, Any]:
    return {
        "sessions": pairing_sessions_total.by_label("outcome"),
        "retries": pairing_retries_total.get(),
        "sessionDuration": pairing_session_duration_seconds.summary(),
    }
