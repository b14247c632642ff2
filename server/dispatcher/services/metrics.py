# ─────────────────────────────────────────────────────────────────────────────
# Dispatch Metrics — thread-safe outcome and latency tracking
# ─────────────────────────────────────────────────────────────────────────────
# Counts one terminal outcome per request (completed, failed, timed out,
# rejected) overall and per model, plus end-to-end latency of completed
# jobs. Exposed via GET /metrics and bridged to Prometheus.
#
# Bounded: latency history uses deque(maxlen=1000), auto-evicts oldest.
# Each instance also owns a Prometheus registry holding the same outcomes as
# a counter and completed-job latency as a histogram.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from prometheus_client import CollectorRegistry, Counter as PromCounter, Histogram


class Outcome(StrEnum):
    """Terminal state of one dispatch request."""

    completed = "completed"
    failed = "failed"
    timed_out = "timed_out"
    rejected_unknown = "rejected_unknown"
    rejected_overloaded = "rejected_overloaded"


@dataclass
class DispatchMetrics:
    """Thread-safe dispatch outcome counters."""

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    requests_total: int = 0
    _outcomes: Counter[str] = field(default_factory=Counter, repr=False)
    _per_model: dict[str, Counter[str]] = field(default_factory=dict, repr=False)

    # Bounded -- only keeps last 1000 latencies, oldest auto-evicted
    _latency_history: deque[float] = field(default_factory=lambda: deque(maxlen=1000), repr=False)

    _start_time: float = field(default_factory=time.time, repr=False)

    prometheus: CollectorRegistry = field(default_factory=CollectorRegistry, repr=False)

    def __post_init__(self) -> None:
        self._requests_counter = PromCounter(
            "dispatch_requests",
            "Dispatch requests by terminal outcome",
            ["model", "outcome"],
            registry=self.prometheus,
        )
        self._duration = Histogram(
            "dispatch_request_duration_seconds",
            "End-to-end duration of completed jobs in seconds",
            ["model"],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0, 60.0, 120.0),
            registry=self.prometheus,
        )

    def record(self, model: str, outcome: Outcome, latency_ms: float | None = None) -> None:
        """Record the terminal outcome of one request."""
        with self._lock:
            self.requests_total += 1
            self._outcomes[outcome.value] += 1
            self._per_model.setdefault(model, Counter())[outcome.value] += 1
            if outcome is Outcome.completed and latency_ms is not None:
                self._latency_history.append(latency_ms)
        self._requests_counter.labels(model=model, outcome=outcome.value).inc()
        if outcome is Outcome.completed and latency_ms is not None:
            self._duration.labels(model=model).observe(latency_ms / 1000)

    def count(self, outcome: Outcome, model: str | None = None) -> int:
        with self._lock:
            if model is None:
                return self._outcomes[outcome.value]
            return self._per_model.get(model, Counter())[outcome.value]

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics for the /metrics endpoint."""
        with self._lock:
            latencies = sorted(self._latency_history)
            n = len(latencies)
            return {
                "requests_total": self.requests_total,
                "completed_total": self._outcomes[Outcome.completed.value],
                "failed_total": self._outcomes[Outcome.failed.value],
                "timed_out_total": self._outcomes[Outcome.timed_out.value],
                "rejected_unknown_total": self._outcomes[Outcome.rejected_unknown.value],
                "rejected_overloaded_total": self._outcomes[Outcome.rejected_overloaded.value],
                "per_model": {
                    model: {o.value: counts[o.value] for o in Outcome}
                    for model, counts in sorted(self._per_model.items())
                },
                "latency_p50_ms": round(latencies[n // 2], 1) if n else 0,
                "latency_p95_ms": round(latencies[int(n * 0.95)], 1) if n else 0,
                "latency_mean_ms": round(sum(latencies) / n, 1) if n else 0,
                "uptime_seconds": int(time.time() - self._start_time),
            }
