"""Instrumentation hook points.

Components receive an :class:`Instrumentation` by reference and call it at
fixed points of the send and receive paths. The base class does nothing, so
running without a tracing backend needs no setup.
"""
from __future__ import annotations

import enum
import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator

log = logging.getLogger(__name__)


class Hook(str, enum.Enum):
    CONNECTION_ESTABLISHED = "connection_established"
    FILE_SEND_STARTED = "file_send_started"
    FILE_SEND_COMPLETED = "file_send_completed"
    COMPRESSION_STARTED = "compression_started"
    COMPRESSION_COMPLETED = "compression_completed"
    CHECKSUM_STARTED = "checksum_started"
    CHECKSUM_COMPLETED = "checksum_completed"
    CHUNK_TRANSFER_STARTED = "chunk_transfer_started"
    CHUNK_TRANSFER_COMPLETED = "chunk_transfer_completed"
    FILE_RECEIVE_STARTED = "file_receive_started"
    FILE_RECEIVE_COMPLETED = "file_receive_completed"
    CHECKSUM_VERIFY = "checksum_verify"
    DECOMPRESS = "decompress"
    WRITE_TO_DISK = "write_to_disk"
    TERMINATION_RECEIVED = "termination_signal_received"
    CLIENT_DISCONNECTED = "client_disconnected"


class Instrumentation:
    """No-op sink. Subclasses override :meth:`emit`; it may be called from many threads."""

    def emit(self, hook: Hook, **attrs: Any) -> None:
        pass

    @contextmanager
    def stage(self, started: Hook, completed: Hook, **attrs: Any) -> Iterator[Dict[str, Any]]:
        """Emit ``started``, run the block, then emit ``completed`` with ``latency_ms``.

        The yielded dict is merged into the completion attributes, so the block
        can report values it only learns while running (sizes, digests).
        """
        self.emit(started, **attrs)
        extra: Dict[str, Any] = {}
        t0 = time.perf_counter()
        try:
            yield extra
        except BaseException as e:
            extra["error"] = type(e).__name__
            raise
        finally:
            latency_ms = (time.perf_counter() - t0) * 1000.0
            self.emit(completed, **{**attrs, **extra, "latency_ms": latency_ms})


NULL_INSTRUMENTATION = Instrumentation()


class LoggingInstrumentation(Instrumentation):
    def __init__(self, logger: logging.Logger | None = None, level: int = logging.DEBUG):
        self.logger = logger or log
        self.level = level

    def emit(self, hook: Hook, **attrs: Any) -> None:
        if self.logger.isEnabledFor(self.level):
            fields = " ".join(f"{k}={v}" for k, v in sorted(attrs.items()))
            self.logger.log(self.level, "%s %s", hook.value, fields)
