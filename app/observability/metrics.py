from __future__ import annotations

from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any


@dataclass
class _LatencyAgg:
    count: int = 0
    sum_ms: float = 0.0
    max_ms: float = 0.0

    def observe(self, elapsed_ms: float) -> None:
        self.count += 1
        self.sum_ms += float(elapsed_ms)
        if elapsed_ms > self.max_ms:
            self.max_ms = float(elapsed_ms)


_COUNTERS = (
    "http_requests_total",
    "flows_issued_total",
    "flow_events_total",
    "flows_completed_total",
    "flow_validation_failures_total",
)


class InMemoryMetrics:
    """Thread-safe, process-local metrics (resets on restart)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, int] = dict.fromkeys(_COUNTERS, 0)
        self.http_request_ms = _LatencyAgg()

    def _incr(self, name: str) -> None:
        with self._lock:
            self._counters[name] += 1

    def observe_http_request(self, elapsed_ms: float) -> None:
        with self._lock:
            self._counters["http_requests_total"] += 1
            self.http_request_ms.observe(elapsed_ms)

    def observe_flow_issued(self) -> None:
        self._incr("flows_issued_total")

    def observe_flow_event(self) -> None:
        self._incr("flow_events_total")

    def observe_flow_complete(self) -> None:
        self._incr("flows_completed_total")

    def observe_flow_validation_failure(self) -> None:
        self._incr("flow_validation_failures_total")

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "latency_ms": {
                    "http_request_ms": asdict(self.http_request_ms),
                },
            }

    def reset(self) -> None:
        with self._lock:
            self._counters = dict.fromkeys(_COUNTERS, 0)
            self.http_request_ms = _LatencyAgg()


_METRICS: InMemoryMetrics | None = None


def get_metrics() -> InMemoryMetrics:
    global _METRICS
    if _METRICS is None:
        _METRICS = InMemoryMetrics()
    return _METRICS


def reset_metrics() -> None:
    """Reset metrics counters/aggregates (used by tests)."""

    get_metrics().reset()
