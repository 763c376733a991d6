"""
Run metrics for the executor and the controller.

Every metric the orchestrator itself records is named in :class:`RunMetric` along with
its kind, so a counter cannot be written as a gauge by mistake. Other names are accepted
for ad hoc instrumentation. Labels are optional string pairs. Snapshots sort both.
"""

from __future__ import annotations

import json
import math
import threading
from collections.abc import Mapping
from dataclasses import dataclass, fields
from enum import StrEnum
from typing import Final, TypeAlias

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_Labels: TypeAlias = tuple[tuple[str, str], ...]
_Series: TypeAlias = tuple[str, _Labels]

_MAX_NAME_LEN: Final[int] = 128


class MetricKind(StrEnum):
    COUNTER = "counter"
    GAUGE = "gauge"
    DISTRIBUTION = "distribution"


class RunMetric(StrEnum):
    """Metrics recorded by the executor and the controller."""

    TASKS_DISPATCHED = "tasks_dispatched"
    TASKS_COMPLETED = "tasks_completed"
    TASKS_REJECTED = "tasks_rejected"
    TASKS_ESCALATED = "tasks_escalated"
    CONFLICTS_DETECTED = "conflicts_detected"
    GATE_FAILURES = "gate_failures"
    WORKER_TIMEOUTS = "worker_timeouts"
    IN_FLIGHT = "in_flight"
    SLOTS_PEAK = "slots_peak"
    HEALTH_SCORE = "health_score"
    WORKER_SECONDS = "worker_seconds"

    @property
    def kind(self) -> MetricKind:
        return _RUN_METRIC_KINDS[self]


_RUN_METRIC_KINDS: Final[dict[RunMetric, MetricKind]] = {
    RunMetric.TASKS_DISPATCHED: MetricKind.COUNTER,
    RunMetric.TASKS_COMPLETED: MetricKind.COUNTER,
    RunMetric.TASKS_REJECTED: MetricKind.COUNTER,
    RunMetric.TASKS_ESCALATED: MetricKind.COUNTER,
    RunMetric.CONFLICTS_DETECTED: MetricKind.COUNTER,
    RunMetric.GATE_FAILURES: MetricKind.COUNTER,
    RunMetric.WORKER_TIMEOUTS: MetricKind.COUNTER,
    RunMetric.IN_FLIGHT: MetricKind.GAUGE,
    RunMetric.SLOTS_PEAK: MetricKind.GAUGE,
    RunMetric.HEALTH_SCORE: MetricKind.GAUGE,
    RunMetric.WORKER_SECONDS: MetricKind.DISTRIBUTION,
}


@dataclass(frozen=True, slots=True)
class ExecutorCounts:
    """Totals of the executor counters, summed over all labels."""

    tasks_dispatched: int = 0
    tasks_completed: int = 0
    tasks_rejected: int = 0
    tasks_escalated: int = 0
    conflicts_detected: int = 0
    gate_failures: int = 0
    worker_timeouts: int = 0

    def since(self, earlier: ExecutorCounts) -> ExecutorCounts:
        """Counts accumulated after ``earlier`` was taken."""
        return ExecutorCounts(
            **{
                item.name: getattr(self, item.name) - getattr(earlier, item.name)
                for item in fields(self)
            }
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


class _Summary:
    __slots__ = ("count", "total", "low", "high")

    def __init__(self) -> None:
        self.count = 0
        self.total = 0.0
        self.low: float | None = None
        self.high: float | None = None

    def add(self, sample: float) -> None:
        self.count += 1
        self.total += sample
        self.low = sample if self.low is None else min(self.low, sample)
        self.high = sample if self.high is None else max(self.high, sample)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "count": self.count,
            "sum": self.total,
            "min": self.low,
            "max": self.high,
            "avg": self.total / self.count if self.count else 0.0,
        }


class MetricsRegistry:
    """Thread-safe counters, gauges and distributions with a deterministic snapshot."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[_Series, float] = {}
        self._gauges: dict[_Series, float] = {}
        self._summaries: dict[_Series, _Summary] = {}

    def inc(
        self,
        name: RunMetric | str,
        amount: float = 1.0,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        """Add ``amount`` (>= 0) to a counter."""
        series = _series(name, labels, MetricKind.COUNTER)
        delta = _finite(amount, "amount")
        if delta < 0:
            raise ValueError("counter increment amount must be >= 0")
        with self._lock:
            self._counters[series] = self._counters.get(series, 0.0) + delta

    def set_gauge(
        self,
        name: RunMetric | str,
        value: float,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        series = _series(name, labels, MetricKind.GAUGE)
        current = _finite(value, "value")
        with self._lock:
            self._gauges[series] = current

    def observe(
        self,
        name: RunMetric | str,
        value: float,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        series = _series(name, labels, MetricKind.DISTRIBUTION)
        sample = _finite(value, "value")
        with self._lock:
            summary = self._summaries.get(series)
            if summary is None:
                summary = self._summaries[series] = _Summary()
            summary.add(sample)

    def get_counter(
        self, name: RunMetric | str, *, labels: Mapping[str, str] | None = None
    ) -> float:
        series = _series(name, labels, MetricKind.COUNTER)
        with self._lock:
            return self._counters.get(series, 0.0)

    def get_gauge(
        self, name: RunMetric | str, *, labels: Mapping[str, str] | None = None
    ) -> float | None:
        series = _series(name, labels, MetricKind.GAUGE)
        with self._lock:
            return self._gauges.get(series)

    def executor_counts(self) -> ExecutorCounts:
        totals: dict[str, float] = {}
        with self._lock:
            for (name, _), value in self._counters.items():
                totals[name] = totals.get(name, 0.0) + value
        return ExecutorCounts(
            **{item.name: int(totals.get(item.name, 0.0)) for item in fields(ExecutorCounts)}
        )

    def snapshot(self) -> dict[str, JSONValue]:
        with self._lock:
            counters = sorted(self._counters.items())
            gauges = sorted(self._gauges.items())
            summaries = sorted(
                ((series, summary.to_dict()) for series, summary in self._summaries.items()),
                key=lambda item: item[0],
            )
        return {
            "counters": {_render(series): value for series, value in counters},
            "gauges": {_render(series): value for series, value in gauges},
            "distributions": {_render(series): summary for series, summary in summaries},
        }

    def to_json(self) -> str:
        return json.dumps(
            self.snapshot(), sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )


def _series(name: RunMetric | str, labels: Mapping[str, str] | None, kind: MetricKind) -> _Series:
    if not isinstance(name, str) or not name.strip():
        raise ValueError("metric name must be a non-empty string")
    metric = name.strip()
    if len(metric) > _MAX_NAME_LEN:
        raise ValueError(f"metric name must be <= {_MAX_NAME_LEN} characters")
    if metric in _RUN_METRIC_KINDS and RunMetric(metric).kind is not kind:
        raise ValueError(f"{metric!r} is a {RunMetric(metric).kind.value}, not a {kind.value}")

    pairs: list[tuple[str, str]] = []
    for key, value in (labels or {}).items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValueError("metric labels must map strings to strings")
        if not key.strip() or not value.strip():
            raise ValueError(f"label {key!r} must have a non-empty key and value")
        pairs.append((key.strip(), value.strip()))
    return str(metric), tuple(sorted(pairs))


def _render(series: _Series) -> str:
    name, labels = series
    if not labels:
        return name
    return name + "{" + ",".join(f"{key}={value}" for key, value in labels) + "}"


def _finite(value: float, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{what} must be numeric, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        raise ValueError(f"{what} must be finite")
    return parsed


__all__ = ["ExecutorCounts", "MetricKind", "MetricsRegistry", "RunMetric"]
