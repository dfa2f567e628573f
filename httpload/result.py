"""
Result aggregation for httpload runs.

LoadResult accumulates per-request outcomes while a run is active and holds
the derived statistics (latency percentiles, throughput) once it finishes.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .errors import ErrorClass

PERCENTILES = (50, 90, 95, 99)


def percentile(sorted_samples: list[float], p: int) -> float:
    """Nearest-rank percentile of an ascending list.

    Selects the literal sample at index floor(p * n / 100), clamped to the
    last index. No interpolation.

    Args:
        sorted_samples: Samples sorted in ascending order
        p: Percentile between 0 and 100

    Returns:
        The selected sample, or 0.0 for an empty list
    """
    if not sorted_samples:
        return 0.0
    index = min((p * len(sorted_samples)) // 100, len(sorted_samples) - 1)
    return sorted_samples[index]


@dataclass
class LoadResult:
    """Outcome of one load test run.

    Latencies are in milliseconds. Counters and histograms are updated by
    worker tasks through the record_* methods; everything else is filled in
    by finalize().

    Attributes:
        total_requests: Requests attempted
        success_count: Responses with a status in [200, 400)
        failure_count: Everything else
        duration_seconds: Wall-clock duration of the run
        requests_per_second: Throughput
        avg_latency_ms: Mean response latency
        min_latency_ms: Fastest response
        max_latency_ms: Slowest response
        p50_ms: 50th percentile (median)
        p90_ms: 90th percentile
        p95_ms: 95th percentile
        p99_ms: 99th percentile
        status_codes: Response count per HTTP status code
        errors: Failure count per error class
        bytes_sent: Request body bytes sent
        bytes_received: Response body bytes received
        start_time: When the run started
        end_time: When the run ended
    """

    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    duration_seconds: float = 0.0
    requests_per_second: float = 0.0
    avg_latency_ms: float = 0.0
    min_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    p50_ms: float = 0.0
    p90_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0
    status_codes: dict[int, int] = field(default_factory=dict)
    errors: dict[str, int] = field(default_factory=dict)
    bytes_sent: int = 0
    bytes_received: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    latencies: list[float] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def record_response(
        self,
        status_code: int,
        latency_ms: float,
        bytes_sent: int = 0,
        bytes_received: int = 0,
    ) -> None:
        """Record a request that produced an HTTP response."""
        with self._lock:
            self.total_requests += 1
            self.bytes_sent += bytes_sent
            self.bytes_received += bytes_received
            self.status_codes[status_code] = self.status_codes.get(status_code, 0) + 1
            self.latencies.append(latency_ms)
            if len(self.latencies) == 1 or latency_ms < self.min_latency_ms:
                self.min_latency_ms = latency_ms
            if latency_ms > self.max_latency_ms:
                self.max_latency_ms = latency_ms
            if 200 <= status_code < 400:
                self.success_count += 1
            else:
                self.failure_count += 1

    def record_error(self, error_class: ErrorClass, bytes_sent: int = 0) -> None:
        """Record a request that failed without a response."""
        key = error_class.value
        with self._lock:
            self.total_requests += 1
            self.failure_count += 1
            self.bytes_sent += bytes_sent
            self.errors[key] = self.errors.get(key, 0) + 1

    def finalize(self, duration_seconds: float) -> None:
        """Compute derived statistics once all workers have finished.

        Args:
            duration_seconds: Elapsed wall-clock time of the run
        """
        with self._lock:
            self.duration_seconds = duration_seconds
            if duration_seconds > 0:
                self.requests_per_second = self.total_requests / duration_seconds

            if not self.latencies:
                self.min_latency_ms = 0.0
                return

            self.latencies.sort()
            self.avg_latency_ms = sum(self.latencies) / len(self.latencies)
            self.p50_ms, self.p90_ms, self.p95_ms, self.p99_ms = (
                percentile(self.latencies, p) for p in PERCENTILES
            )

    @property
    def success_rate(self) -> float:
        """Percentage of successful requests."""
        if self.total_requests == 0:
            return 0.0
        return (self.success_count / self.total_requests) * 100

    @property
    def failure_rate(self) -> float:
        """Percentage of failed requests."""
        if self.total_requests == 0:
            return 0.0
        return (self.failure_count / self.total_requests) * 100

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "summary": {
                "total_requests": self.total_requests,
                "success_count": self.success_count,
                "failure_count": self.failure_count,
                "success_rate_percent": round(self.success_rate, 2),
                "duration_seconds": round(self.duration_seconds, 3),
                "requests_per_second": round(self.requests_per_second, 2),
                "start_time": self.start_time.isoformat() if self.start_time else None,
                "end_time": self.end_time.isoformat() if self.end_time else None,
            },
            "latency": {
                "min_ms": round(self.min_latency_ms, 3),
                "avg_ms": round(self.avg_latency_ms, 3),
                "p50_ms": round(self.p50_ms, 3),
                "p90_ms": round(self.p90_ms, 3),
                "p95_ms": round(self.p95_ms, 3),
                "p99_ms": round(self.p99_ms, 3),
                "max_ms": round(self.max_latency_ms, 3),
                "sample_count": len(self.latencies),
            },
            "throughput": {
                "bytes_sent": self.bytes_sent,
                "bytes_received": self.bytes_received,
            },
            "status_codes": {str(code): count for code, count in sorted(self.status_codes.items())},
            "errors": dict(sorted(self.errors.items())),
        }
