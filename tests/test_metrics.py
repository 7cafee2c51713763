from __future__ import annotations

import threading

from cftp.metrics import NULL_METRICS, Histogram, InMemoryMetrics, TransferResult


def test_concurrent_increments():
    m = InMemoryMetrics()

    def bump():
        for _ in range(1000):
            m.add_files_received()
            m.add_files_sent()
            m.record_transfer_latency_ms(3.0)

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    snap = m.snapshot()
    assert snap["files_received"] == 8000
    assert snap["files_sent"] == 8000
    assert snap["transfer_latency_count"] == 8000
    assert snap["transfer_latency_mean_ms"] == 3.0


def test_histogram_buckets():
    h = Histogram(bounds=(10, 100))
    for v in (1, 10, 50, 1000):
        h.record(v)
    assert h.counts == [2, 1, 1]
    assert h.min == 1
    assert h.max == 1000


def test_null_metrics_accepts_everything():
    NULL_METRICS.add_files_sent()
    NULL_METRICS.add_files_received(3)
    NULL_METRICS.add_checksum_mismatch()
    NULL_METRICS.record_transfer_latency_ms(1.5)


def test_transfer_result_throughput():
    r = TransferResult(name="a", path="a", original_size=1_000_000, duration_s=1.0)
    assert r.ok
    assert r.throughput_mbps == 8.0
    assert TransferResult(name="a", path="a").throughput_mbps == 0.0
