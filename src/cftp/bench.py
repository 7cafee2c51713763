from __future__ import annotations

import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .config import Config
from .metrics import InMemoryMetrics
from .receiver import Receiver
from .sender import send_files


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    files: int
    files_saved: int
    send_failures: int
    bytes_transferred: int
    compressed_bytes: int
    duration_s: float
    throughput_mbps: float


def run_benchmark(
    files: Sequence[str | Path],
    *,
    chunk_size: int = 8192,
    out_dir: str | Path | None = None,
    settle_s: float = 10.0,
) -> BenchmarkResult:
    """Loopback run: one receiver on an ephemeral port, one concurrent sender per file."""
    metrics = InMemoryMetrics()
    with tempfile.TemporaryDirectory() as tmp:
        out = Path(out_dir) if out_dir is not None else Path(tmp)
        recv_config = Config(host="127.0.0.1", port=0, output_dir=out, chunk_size=chunk_size)

        with Receiver(recv_config, metrics=metrics) as recv:
            host, port = recv.bound_address
            send_config = recv_config.replace(host=host, port=port)

            start = time.perf_counter()
            results = send_files([str(f) for f in files], send_config, metrics=metrics)
            sent = sum(1 for r in results if r.ok)

            deadline = time.monotonic() + settle_s
            while metrics.files_received < sent and time.monotonic() < deadline:
                time.sleep(0.01)
            duration_s = max(0.001, time.perf_counter() - start)

    size = sum(r.original_size for r in results if r.ok)
    return BenchmarkResult(
        files=len(results),
        files_saved=metrics.files_received,
        send_failures=len(results) - sent,
        bytes_transferred=size,
        compressed_bytes=sum(r.compressed_size for r in results if r.ok),
        duration_s=duration_s,
        throughput_mbps=(size * 8 / 1_000_000) / duration_s,
    )
