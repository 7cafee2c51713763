from __future__ import annotations

import socket
from typing import BinaryIO, Tuple

from .constants import DEFAULT_BACKLOG


class TcpEndpoint:
    """One connected stream socket plus its buffered reader/writer."""

    def __init__(self, sock: socket.socket, peer: Tuple[str, int] | None = None):
        self.sock = sock
        self.peer = peer
        self._reader: BinaryIO | None = None
        self._writer: BinaryIO | None = None

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        timeout_ms: int = 0,
    ) -> "TcpEndpoint":
        timeout = timeout_ms / 1000.0 if timeout_ms > 0 else None
        sock = socket.create_connection((host, port), timeout=timeout)
        sock.settimeout(None)
        return cls(sock, (host, port))

    @classmethod
    def accepted(
        cls,
        sock: socket.socket,
        peer: Tuple[str, int],
        idle_timeout_ms: int = 0,
    ) -> "TcpEndpoint":
        sock.settimeout(idle_timeout_ms / 1000.0 if idle_timeout_ms > 0 else None)
        return cls(sock, peer)

    def reader(self) -> BinaryIO:
        if self._reader is None:
            self._reader = self.sock.makefile("rb")
        return self._reader

    def writer(self) -> BinaryIO:
        if self._writer is None:
            self._writer = self.sock.makefile("wb")
        return self._writer

    def shutdown_write(self) -> None:
        if self._writer is not None:
            self._writer.flush()
        self.sock.shutdown(socket.SHUT_WR)

    def close(self) -> None:
        for f in (self._reader, self._writer):
            if f is not None:
                try:
                    f.close()
                except OSError:
                    pass
        self._reader = self._writer = None
        self.sock.close()

    def __enter__(self) -> "TcpEndpoint":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def listening_socket(host: str, port: int, backlog: int = DEFAULT_BACKLOG, poll_ms: int = 0) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(backlog)
    except OSError:
        sock.close()
        raise
    if poll_ms > 0:
        sock.settimeout(poll_ms / 1000.0)
    return sock
