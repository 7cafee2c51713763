from __future__ import annotations

import bisect
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

LATENCY_BUCKETS_MS: Tuple[float, ...] = (1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)


@dataclass(slots=True)
class TransferResult:
    name: str
    path: str
    original_size: int = 0
    compressed_size: int = 0
    digest: str = ""
    duration_s: float = 0.0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.original_size * 8 / 1_000_000) / self.duration_s


class MetricsSink:
    """No-op metrics; subclasses must tolerate concurrent calls."""

    def add_files_sent(self, n: int = 1) -> None:
        pass

    def add_files_received(self, n: int = 1) -> None:
        pass

    def add_checksum_mismatch(self, n: int = 1) -> None:
        pass

    def record_transfer_latency_ms(self, value: float) -> None:
        pass


NULL_METRICS = MetricsSink()


@dataclass(slots=True)
class Histogram:
    bounds: Tuple[float, ...] = LATENCY_BUCKETS_MS
    counts: List[int] = field(default_factory=list)
    count: int = 0
    total: float = 0.0
    min: float | None = None
    max: float | None = None

    def __post_init__(self) -> None:
        if not self.counts:
            self.counts = [0] * (len(self.bounds) + 1)

    def record(self, value: float) -> None:
        self.counts[bisect.bisect_left(self.bounds, value)] += 1
        self.count += 1
        self.total += value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0


class InMemoryMetrics(MetricsSink):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.files_sent = 0
        self.files_received = 0
        self.checksum_mismatches = 0
        self.transfer_latency_ms = Histogram()

    def add_files_sent(self, n: int = 1) -> None:
        with self._lock:
            self.files_sent += n

    def add_files_received(self, n: int = 1) -> None:
        with self._lock:
            self.files_received += n

    def add_checksum_mismatch(self, n: int = 1) -> None:
        with self._lock:
            self.checksum_mismatches += n

    def record_transfer_latency_ms(self, value: float) -> None:
        with self._lock:
            self.transfer_latency_ms.record(value)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            h = self.transfer_latency_ms
            return {
                "files_sent": self.files_sent,
                "files_received": self.files_received,
                "checksum_mismatches": self.checksum_mismatches,
                "transfer_latency_count": h.count,
                "transfer_latency_mean_ms": h.mean,
            }
