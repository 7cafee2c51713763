from __future__ import annotations

import enum
import logging
import os
import socket
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Tuple

from .config import Config
from .constants import ACCEPT_POLL_MS
from .instrumentation import NULL_INSTRUMENTATION, Hook, Instrumentation
from .metrics import NULL_METRICS, MetricsSink
from .net import TcpEndpoint, listening_socket
from .pipeline import DecompressError, decompress, digest, ensure_digest_available
from .wire import ProtocolError, RecordHeader, UnexpectedEndOfStream, read_header, read_payload

log = logging.getLogger(__name__)


class UnsafePathError(ProtocolError):
    pass


class SessionState(enum.Enum):
    AWAITING_HEADER = "awaiting_header"
    READING_PAYLOAD = "reading_payload"
    VERIFYING = "verifying"
    DECOMPRESSING = "decompressing"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


class FileOutcome(enum.Enum):
    SAVED = "saved"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    DECOMPRESS_FAILED = "decompress_failed"


@dataclass(slots=True)
class SessionResult:
    peer: str
    state: SessionState = SessionState.AWAITING_HEADER
    files: List[Tuple[str, FileOutcome]] = field(default_factory=list)
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is SessionState.DONE

    @property
    def saved(self) -> List[str]:
        return [name for name, outcome in self.files if outcome is FileOutcome.SAVED]


def resolve_target(output_dir: Path, name: str) -> Path:
    """Map a wire name onto a path strictly inside ``output_dir``."""
    root = Path(os.path.abspath(output_dir))
    if "\x00" in name:
        raise UnsafePathError(f"blocked unsafe path: {name!r}")
    target = Path(os.path.normpath(os.path.join(root, name)))
    if root not in target.parents:
        raise UnsafePathError(f"blocked unsafe path: {name!r}")
    return target


@dataclass(slots=True)
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class TargetLocks:
    """One lock per resolved target path, dropped when nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[Path, _LockEntry] = {}

    @contextmanager
    def hold(self, target: Path) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(target, _LockEntry())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[target]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


def write_file(target: Path, data: bytes) -> None:
    """Write to a temporary sibling, then rename over ``target``."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, target)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def _format_peer(peer: Tuple[str, int] | None) -> str:
    if not peer:
        return "unknown"
    return f"{peer[0]}:{peer[1]}"


@dataclass(slots=True)
class ConnectionHandler:
    """Receive-side state machine for one accepted connection.

    Records are handled strictly in arrival order. A checksum mismatch or a
    gzip decode failure skips that file only; end of stream, resets, idle
    timeouts, disk errors and unsafe names end the session. The socket is
    closed on every exit path.
    """

    endpoint: TcpEndpoint
    config: Config
    instrumentation: Instrumentation = NULL_INSTRUMENTATION
    metrics: MetricsSink = NULL_METRICS
    locks: TargetLocks | None = None
    state: SessionState = field(default=SessionState.AWAITING_HEADER, init=False)

    def run(self) -> SessionResult:
        peer = _format_peer(self.endpoint.peer)
        result = SessionResult(peer=peer)
        instr = self.instrumentation

        try:
            with self.endpoint:
                instr.emit(Hook.CONNECTION_ESTABLISHED, peer=peer)
                log.info("client connected: %s", peer)
                reader = self.endpoint.reader()
                while True:
                    self.state = SessionState.AWAITING_HEADER
                    header = read_header(reader, self.config.max_payload_bytes)
                    if header is None:
                        self.state = SessionState.DONE
                        instr.emit(Hook.TERMINATION_RECEIVED, peer=peer, files=len(result.files))
                        log.info("client %s finished; %d file(s)", peer, len(result.files))
                        break
                    result.files.append((header.name, self._receive_file(reader, header, peer)))
        except UnexpectedEndOfStream as e:
            reason = "disconnected without termination marker" if e.at_boundary else str(e)
            self._fail(result, reason)
            instr.emit(Hook.CLIENT_DISCONNECTED, peer=peer, reason=reason)
        except UnsafePathError as e:
            self._fail(result, str(e), logging.ERROR)
        except ProtocolError as e:
            self._fail(result, f"protocol error: {e}")
        except ConnectionResetError:
            self._fail(result, "connection reset by peer")
            instr.emit(Hook.CLIENT_DISCONNECTED, peer=peer, reason="reset")
        except TimeoutError:
            self._fail(result, f"idle for more than {self.config.idle_timeout_ms} ms")
        except OSError as e:
            self._fail(result, f"I/O failure: {e}", logging.ERROR)

        result.state = self.state
        return result

    def _fail(self, result: SessionResult, reason: str, level: int = logging.WARNING) -> None:
        self.state = SessionState.FAILED
        result.reason = reason
        log.log(level, "session with %s terminated: %s", result.peer, reason)

    def _receive_file(self, reader: BinaryIO, header: RecordHeader, peer: str) -> FileOutcome:
        with self.instrumentation.stage(
            Hook.FILE_RECEIVE_STARTED,
            Hook.FILE_RECEIVE_COMPLETED,
            file=header.name,
            compressed_size=header.payload_size,
            peer=peer,
        ) as done:
            outcome = self._process(reader, header)
            done["outcome"] = outcome.value
        return outcome

    def _process(self, reader: BinaryIO, header: RecordHeader) -> FileOutcome:
        instr = self.instrumentation
        name = header.name

        self.state = SessionState.READING_PAYLOAD
        payload = read_payload(reader, header.payload_size, self.config.chunk_size)

        self.state = SessionState.VERIFYING
        actual = digest(payload)
        matched = actual == header.digest
        instr.emit(Hook.CHECKSUM_VERIFY, file=name, expected=header.digest, actual=actual, ok=matched)
        if not matched:
            self.metrics.add_checksum_mismatch()
            log.warning("checksum mismatch for %s; expected %s actual %s", name, header.digest, actual)
            return FileOutcome.CHECKSUM_MISMATCH

        self.state = SessionState.DECOMPRESSING
        try:
            data = decompress(payload)
        except DecompressError as e:
            instr.emit(Hook.DECOMPRESS, file=name, ok=False, error=str(e))
            log.warning("could not decompress %s: %s", name, e)
            return FileOutcome.DECOMPRESS_FAILED
        instr.emit(Hook.DECOMPRESS, file=name, ok=True, decompressed_size=len(data))
        del payload

        self.state = SessionState.WRITING
        target = resolve_target(self.config.output_dir, name)
        t0 = time.perf_counter()
        try:
            if self.locks is not None:
                with self.locks.hold(target):
                    write_file(target, data)
            else:
                write_file(target, data)
        except OSError as e:
            instr.emit(Hook.WRITE_TO_DISK, file=name, path=str(target), ok=False, error=str(e))
            raise
        instr.emit(
            Hook.WRITE_TO_DISK,
            file=name,
            path=str(target),
            ok=True,
            size=len(data),
            latency_ms=(time.perf_counter() - t0) * 1000.0,
        )

        self.metrics.add_files_received()
        log.info("saved %s (%d bytes decompressed)", target, len(data))
        return FileOutcome.SAVED


class Receiver:
    """Accepts connections forever and gives each one its own handler thread.

    The accept loop never touches payload bytes; the only state shared by
    handlers is the read-only config, the sinks, and the per-path lock table.
    """

    def __init__(
        self,
        config: Config,
        instrumentation: Instrumentation = NULL_INSTRUMENTATION,
        metrics: MetricsSink = NULL_METRICS,
    ):
        ensure_digest_available()
        self.config = config.validate()
        self.instrumentation = instrumentation
        self.metrics = metrics
        self.locks = TargetLocks() if config.lock_target_paths else None
        self._sock: socket.socket | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _listener(self) -> socket.socket:
        if self._sock is None:
            raise RuntimeError("receiver is not bound")
        return self._sock

    @property
    def bound_address(self) -> Tuple[str, int]:
        host, port = self._listener().getsockname()[:2]
        return host, port

    def bind(self) -> Tuple[str, int]:
        if self._sock is None:
            self.config.output_dir.mkdir(parents=True, exist_ok=True)
            self._sock = listening_socket(self.config.host, self.config.port, poll_ms=ACCEPT_POLL_MS)
        return self.bound_address

    def serve_forever(self) -> None:
        host, port = self.bind()
        sock = self._listener()
        log.info("listening on %s:%d; writing to %s", host, port, self.config.output_dir)
        try:
            while not self._stop.is_set():
                try:
                    conn, addr = sock.accept()
                except TimeoutError:
                    continue
                except OSError as e:
                    if self._stop.is_set():
                        break
                    log.warning("accept failed: %s", e)
                    self._stop.wait(ACCEPT_POLL_MS / 1000.0)
                    continue
                try:
                    self._dispatch(conn, addr)
                except (RuntimeError, OSError):
                    log.exception("could not start handler for %s", _format_peer(addr))
                    conn.close()
        finally:
            sock.close()
            self._sock = None
            log.info("receiver stopped")

    def _dispatch(self, conn: socket.socket, addr: Tuple[str, int]) -> threading.Thread:
        handler = ConnectionHandler(
            TcpEndpoint.accepted(conn, addr, self.config.idle_timeout_ms),
            self.config,
            self.instrumentation,
            self.metrics,
            self.locks,
        )
        t = threading.Thread(
            target=self._run_handler,
            args=(handler,),
            name=f"cftp-conn-{_format_peer(addr)}",
            daemon=True,
        )
        t.start()
        return t

    @staticmethod
    def _run_handler(handler: ConnectionHandler) -> None:
        try:
            handler.run()
        except Exception:
            log.exception("handler for %s crashed", _format_peer(handler.endpoint.peer))

    def serve_in_background(self) -> threading.Thread:
        self.bind()
        self._thread = threading.Thread(target=self.serve_forever, name="cftp-accept", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def __enter__(self) -> "Receiver":
        self.serve_in_background()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()


def listen(
    port: int,
    output_dir: Path | str,
    host: str = "0.0.0.0",
    instrumentation: Instrumentation = NULL_INSTRUMENTATION,
    metrics: MetricsSink = NULL_METRICS,
    **options,
) -> None:
    config = Config(host=host, port=port, output_dir=Path(output_dir), **options)
    Receiver(config, instrumentation, metrics).serve_forever()
