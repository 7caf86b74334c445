"""Execution metrics for the resilient executor."""

from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ExecutionMetricsSnapshot:
    """Point-in-time copy of executor counters."""

    total_calls: int
    successful_calls: int
    failed_calls: int
    retry_count: int
    circuit_rejections: int
    total_latency_seconds: float

    @property
    def success_rate(self) -> float:
        """Share of successful calls, 0.0 when nothing ran."""

        if self.total_calls == 0:
            return 0.0
        return self.successful_calls / self.total_calls

    @property
    def average_latency_seconds(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return self.total_latency_seconds / self.total_calls


class ExecutionMetrics:
    """Lock-protected running counters, owned by one executor and never reset."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_calls = 0
        self._successful_calls = 0
        self._failed_calls = 0
        self._retry_count = 0
        self._circuit_rejections = 0
        self._total_latency_seconds = 0.0

    def record_call(self, *, latency_seconds: float, succeeded: bool) -> None:
        with self._lock:
            self._total_calls += 1
            self._total_latency_seconds += max(0.0, latency_seconds)
            if succeeded:
                self._successful_calls += 1
            else:
                self._failed_calls += 1

    def record_retry(self) -> None:
        with self._lock:
            self._retry_count += 1

    def record_circuit_rejection(self) -> None:
        with self._lock:
            self._circuit_rejections += 1

    def snapshot(self) -> ExecutionMetricsSnapshot:
        with self._lock:
            return ExecutionMetricsSnapshot(
                total_calls=self._total_calls,
                successful_calls=self._successful_calls,
                failed_calls=self._failed_calls,
                retry_count=self._retry_count,
                circuit_rejections=self._circuit_rejections,
                total_latency_seconds=self._total_latency_seconds,
            )

    @property
    def success_rate(self) -> float:
        return self.snapshot().success_rate

    @property
    def average_latency_seconds(self) -> float:
        return self.snapshot().average_latency_seconds


def render_metrics_lines(snapshot: ExecutionMetricsSnapshot) -> list[str]:
    """Render operator-facing metrics lines for CLI output."""

    return [
        (
            "Agent calls: "
            f"total={snapshot.total_calls} succeeded={snapshot.successful_calls} "
            f"failed={snapshot.failed_calls} retries={snapshot.retry_count} "
            f"circuit_rejections={snapshot.circuit_rejections}"
        ),
        (
            f"Success rate: {_fmt_ratio(snapshot.success_rate, snapshot.total_calls)} "
            f"avg_latency={snapshot.average_latency_seconds:.2f}s"
        ),
    ]


def _fmt_ratio(value: float, sample_size: int) -> str:
    if sample_size <= 0:
        return "n/a"
    return f"{value:.2%}"
