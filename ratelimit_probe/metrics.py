"""
Metric sinks for a probe run.

Three accumulator kinds, named after the load-engine metrics they replace:

- ``Counter``: monotonic sum (request counters, rate-limit hits)
- ``Rate``: fraction of true samples (error rate, rate-limit rate)
- ``Trend``: latency samples with avg / min / med / max / percentiles

Each metric also keeps a breakdown per tag value (``stage``, ``category``,
``endpoint``) so the report can slice the run. Updates are serialized with a
lock per metric; sinks from several workers combine with ``merge``.
"""

import statistics
import threading
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

Tags = Optional[Dict[str, str]]


def percentile(values: List[float], p: float) -> float:
    """Nearest-rank percentile of ``values`` for ``p`` in 0..100."""
    if not values:
        return 0
    sorted_values = sorted(values)
    idx = int(len(sorted_values) * p / 100)
    return sorted_values[min(idx, len(sorted_values) - 1)]


# =============================================================================
# ACCUMULATORS
# =============================================================================

class _CounterValue:
    def __init__(self):
        self.count = 0.0

    def add(self, value: float):
        self.count += value

    def merge(self, other: "_CounterValue"):
        self.count += other.count

    def values(self) -> Dict[str, Any]:
        count = int(self.count) if float(self.count).is_integer() else self.count
        return {"count": count}


class _RateValue:
    def __init__(self):
        self.passes = 0
        self.total = 0

    def add(self, value: bool):
        self.total += 1
        if value:
            self.passes += 1

    def merge(self, other: "_RateValue"):
        self.passes += other.passes
        self.total += other.total

    @property
    def rate(self) -> float:
        return self.passes / self.total if self.total else 0

    def values(self) -> Dict[str, Any]:
        return {
            "rate": self.rate,
            "passes": self.passes,
            "fails": self.total - self.passes,
        }


class _TrendValue:
    def __init__(self):
        self.samples: List[float] = []

    def add(self, value: float):
        self.samples.append(float(value))

    def merge(self, other: "_TrendValue"):
        self.samples.extend(other.samples)

    def values(self) -> Dict[str, Any]:
        s = self.samples
        if not s:
            return {
                "count": 0, "avg": 0, "min": 0, "med": 0, "max": 0,
                "p(90)": 0, "p(95)": 0, "p(99)": 0,
            }
        return {
            "count": len(s),
            "avg": statistics.mean(s),
            "min": min(s),
            "med": statistics.median(s),
            "max": max(s),
            "p(90)": percentile(s, 90),
            "p(95)": percentile(s, 95),
            "p(99)": percentile(s, 99),
        }


# =============================================================================
# METRICS
# =============================================================================

class Metric:
    """A named accumulator with a per-tag breakdown."""

    kind = ""
    _value_type = None

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._total = self._value_type()
        self._tagged: Dict[str, Dict[str, Any]] = defaultdict(dict)

    def add(self, value, tags: Tags = None):
        with self._lock:
            self._total.add(value)
            for key, tag_value in (tags or {}).items():
                bucket = self._tagged[key]
                if tag_value not in bucket:
                    bucket[tag_value] = self._value_type()
                bucket[tag_value].add(value)

    def values(self, **tag) -> Dict[str, Any]:
        """
        Aggregate values, or those of one tag series when called as
        ``values(category="write")``.
        """
        with self._lock:
            if not tag:
                return self._total.values()
            (key, tag_value), = tag.items()
            series = self._tagged.get(key, {}).get(tag_value)
            return series.values() if series is not None else self._value_type().values()

    def tag_values(self, key: str) -> List[str]:
        with self._lock:
            return sorted(self._tagged.get(key, {}))

    def merge(self, other: "Metric"):
        if type(other) is not type(self):
            raise TypeError(f"cannot merge {other.kind} into {self.kind} metric {self.name!r}")
        with other._lock:
            total = other._total
            tagged = {k: dict(v) for k, v in other._tagged.items()}
        with self._lock:
            self._total.merge(total)
            for key, bucket in tagged.items():
                for tag_value, series in bucket.items():
                    mine = self._tagged[key].setdefault(tag_value, self._value_type())
                    mine.merge(series)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "type": self.kind,
                "values": self._total.values(),
                "tags": {
                    key: {tag_value: series.values() for tag_value, series in sorted(bucket.items())}
                    for key, bucket in sorted(self._tagged.items())
                },
            }


class Counter(Metric):
    kind = "counter"
    _value_type = _CounterValue

    def add(self, value: float = 1, tags: Tags = None):
        super().add(value, tags)

    @property
    def count(self) -> float:
        return self.values()["count"]


class Rate(Metric):
    kind = "rate"
    _value_type = _RateValue

    def add(self, value: bool, tags: Tags = None):
        super().add(bool(value), tags)

    @property
    def rate(self) -> float:
        return self.values()["rate"]


class Trend(Metric):
    kind = "trend"
    _value_type = _TrendValue


# =============================================================================
# SINKS
# =============================================================================

class MetricSinks:
    """
    The fixed set of metrics written by probes and read by the reporter.

    Custom workload metrics come first; the ``http_*``, ``checks`` and
    iteration metrics are the ones a load engine would normally provide.
    ``iteration_duration`` is measured on the run clock (milliseconds of
    time-units), so it matches the schedule at any ``time_scale``; HTTP
    latencies are always real milliseconds.
    """

    COUNTERS = (
        "auth_requests", "read_requests", "write_requests", "rate_limit_hits",
        "http_reqs", "iterations", "dropped_iterations",
    )
    RATES = ("errors", "rate_limit_errors", "http_req_failed", "checks")
    TRENDS = (
        "login_duration", "register_duration", "http_req_duration",
        "iteration_duration", "retry_after_seconds",
    )

    def __init__(self):
        self._metrics: Dict[str, Metric] = {}
        for name in self.COUNTERS:
            self._metrics[name] = Counter(name)
        for name in self.RATES:
            self._metrics[name] = Rate(name)
        for name in self.TRENDS:
            self._metrics[name] = Trend(name)

    def __getattr__(self, name: str) -> Metric:
        metrics = self.__dict__.get("_metrics", {})
        if name in metrics:
            return metrics[name]
        raise AttributeError(name)

    def __getitem__(self, name: str) -> Metric:
        return self._metrics[name]

    def __iter__(self) -> Iterable[Metric]:
        return iter(self._metrics.values())

    def names(self) -> List[str]:
        return list(self._metrics)

    def category_counter(self, category) -> Counter:
        """Request counter for an endpoint category (AUTH/READ/WRITE)."""
        return self._metrics[f"{category.value}_requests"]

    def merge(self, other: "MetricSinks") -> "MetricSinks":
        for name, metric in other._metrics.items():
            self._metrics[name].merge(metric)
        return self

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Point-in-time copy of every metric, safe to hand to the reporter."""
        return {name: metric.snapshot() for name, metric in self._metrics.items()}
