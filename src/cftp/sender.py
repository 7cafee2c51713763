from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from .config import Config
from .instrumentation import NULL_INSTRUMENTATION, Hook, Instrumentation
from .metrics import NULL_METRICS, MetricsSink, TransferResult
from .net import TcpEndpoint
from .pipeline import compress_file, digest, ensure_digest_available
from .wire import FileRecord, write_record, write_terminator

log = logging.getLogger(__name__)


class SendError(Exception):
    def __init__(self, stage: str, path: str, cause: BaseException):
        super().__init__(f"{stage} failed for {path}: {cause}")
        self.stage = stage
        self.path = path
        self.cause = cause


@dataclass(slots=True)
class Sender:
    """Sends exactly one file over exactly one connection, then is spent."""

    config: Config
    path: str
    instrumentation: Instrumentation = NULL_INSTRUMENTATION
    metrics: MetricsSink = NULL_METRICS
    _used: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        ensure_digest_available()
        self.path = os.fspath(self.path)

    def run(self) -> TransferResult:
        if self._used:
            raise RuntimeError("Sender instances are single-use")
        self._used = True

        name = os.path.basename(self.path)
        result = TransferResult(name=name, path=self.path)
        instr = self.instrumentation
        host, port = self.config.destination
        start = time.perf_counter()

        with instr.stage(Hook.FILE_SEND_STARTED, Hook.FILE_SEND_COMPLETED, file=name) as done:
            with instr.stage(Hook.COMPRESSION_STARTED, Hook.COMPRESSION_COMPLETED, file=name) as info:
                try:
                    result.original_size = os.path.getsize(self.path)
                    compressed = compress_file(self.path, self.config.chunk_size)
                except OSError as e:
                    raise SendError("compress", self.path, e) from e
                result.compressed_size = len(compressed)
                info.update(original_size=result.original_size, compressed_size=result.compressed_size)

            with instr.stage(Hook.CHECKSUM_STARTED, Hook.CHECKSUM_COMPLETED, file=name) as info:
                result.digest = digest(compressed)
                info["digest"] = result.digest

            try:
                endpoint = TcpEndpoint.connect(host, port, self.config.connect_timeout_ms)
            except OSError as e:
                raise SendError("connect", self.path, e) from e
            instr.emit(Hook.CONNECTION_ESTABLISHED, peer=f"{host}:{port}", file=name)

            with endpoint:
                try:
                    out = endpoint.writer()
                    with instr.stage(
                        Hook.CHUNK_TRANSFER_STARTED,
                        Hook.CHUNK_TRANSFER_COMPLETED,
                        file=name,
                        compressed_size=result.compressed_size,
                    ) as info:
                        record = FileRecord(digest=result.digest, name=name, payload=compressed)
                        info["chunks"] = write_record(out, record, self.config.chunk_size)
                    write_terminator(out)
                    endpoint.shutdown_write()
                except OSError as e:
                    raise SendError("transfer", self.path, e) from e

            result.duration_s = time.perf_counter() - start
            done["duration_ms"] = result.duration_s * 1000.0

        self.metrics.add_files_sent()
        self.metrics.record_transfer_latency_ms(result.duration_s * 1000.0)
        log.info(
            "sent %s; %d -> %d bytes in %.3fs",
            name,
            result.original_size,
            result.compressed_size,
            result.duration_s,
        )
        return result


def send(
    path: str,
    destination: Tuple[str, int],
    config: Config | None = None,
    instrumentation: Instrumentation = NULL_INSTRUMENTATION,
    metrics: MetricsSink = NULL_METRICS,
) -> TransferResult:
    host, port = destination
    return send_file(path, (config or Config()).replace(host=host, port=port), instrumentation, metrics)


def send_file(
    path: str,
    config: Config,
    instrumentation: Instrumentation = NULL_INSTRUMENTATION,
    metrics: MetricsSink = NULL_METRICS,
) -> TransferResult:
    return Sender(config, path, instrumentation, metrics).run()


def send_files(
    paths: Iterable[str] | None,
    config: Config,
    instrumentation: Instrumentation = NULL_INSTRUMENTATION,
    metrics: MetricsSink = NULL_METRICS,
) -> List[TransferResult]:
    """Send every path on its own connection, concurrently, one thread per file.

    Failed sends do not stop the others; they come back with ``error`` set.
    Results are in input order.
    """
    targets: Sequence[str] = [os.fspath(p) for p in (config.input_files if paths is None else paths)]
    results: List[TransferResult | None] = [None] * len(targets)

    def runner(i: int, path: str) -> None:
        try:
            results[i] = send_file(path, config, instrumentation, metrics)
        except SendError as e:
            log.error("%s", e)
            results[i] = TransferResult(name=os.path.basename(path), path=path, error=str(e))
        except Exception as e:
            log.exception("unexpected failure sending %s", path)
            results[i] = TransferResult(name=os.path.basename(path), path=path, error=repr(e))

    threads = [
        threading.Thread(target=runner, args=(i, p), name=f"cftp-send-{i}", daemon=True)
        for i, p in enumerate(targets)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    return [r for r in results if r is not None]
