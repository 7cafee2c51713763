"""Framing for a stream of files over a byte stream.

Per record, in order:

    digest       length-prefixed UTF-8 string (SHA-256 hex)
    name         length-prefixed UTF-8 string ("" ends the session)
    payload_size unsigned 64-bit big-endian (absent for the terminator)
    payload      payload_size raw bytes of gzip data

Chunk boundaries on the write path are not visible to the reader.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO

from .constants import (
    DEFAULT_CHUNK_SIZE,
    MAX_STRING_BYTES,
    PAYLOAD_SIZE_FORMAT,
    STRING_LEN_FORMAT,
    TERMINATION_NAME,
)

_STRING_LEN = struct.Struct(STRING_LEN_FORMAT)
_PAYLOAD_SIZE = struct.Struct(PAYLOAD_SIZE_FORMAT)


class ProtocolError(Exception):
    pass


class UnexpectedEndOfStream(ProtocolError, EOFError):
    def __init__(self, message: str, *, at_boundary: bool = False):
        super().__init__(message)
        self.at_boundary = at_boundary


@dataclass(frozen=True, slots=True)
class RecordHeader:
    digest: str
    name: str
    payload_size: int


@dataclass(frozen=True, slots=True)
class FileRecord:
    digest: str
    name: str
    payload: bytes

    @property
    def payload_size(self) -> int:
        return len(self.payload)

    @property
    def header(self) -> RecordHeader:
        return RecordHeader(self.digest, self.name, len(self.payload))


def read_exact(stream: BinaryIO, n: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    """Read exactly ``n`` bytes, retrying short reads until the stream ends."""
    buf = bytearray()
    while len(buf) < n:
        chunk = stream.read(min(n - len(buf), chunk_size))
        if not chunk:
            raise UnexpectedEndOfStream(f"unexpected end of stream after {len(buf)}/{n} bytes")
        buf.extend(chunk)
    return bytes(buf)


def encode_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    if len(raw) > MAX_STRING_BYTES:
        raise ProtocolError(f"string too long for frame: {len(raw)} bytes")
    return _STRING_LEN.pack(len(raw)) + raw


def read_string(stream: BinaryIO, *, first: bool = False) -> str:
    head = stream.read(_STRING_LEN.size)
    if first and not head:
        raise UnexpectedEndOfStream("stream ended before termination marker", at_boundary=True)
    if len(head) < _STRING_LEN.size:
        head += read_exact(stream, _STRING_LEN.size - len(head))
    (length,) = _STRING_LEN.unpack(head)
    raw = read_exact(stream, length)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"invalid UTF-8 in frame string: {e}") from e


def encode_header(header: RecordHeader) -> bytes:
    if header.payload_size < 0:
        raise ProtocolError(f"negative payload size: {header.payload_size}")
    return encode_string(header.digest) + encode_string(header.name) + _PAYLOAD_SIZE.pack(header.payload_size)


def encode_terminator(digest: str = "") -> bytes:
    return encode_string(digest) + encode_string(TERMINATION_NAME)


def read_header(stream: BinaryIO, max_payload_bytes: int | None = None) -> RecordHeader | None:
    """Decode the next record header; ``None`` means the termination marker."""
    digest = read_string(stream, first=True)
    name = read_string(stream)
    if name == TERMINATION_NAME:
        return None
    (size,) = _PAYLOAD_SIZE.unpack(read_exact(stream, _PAYLOAD_SIZE.size))
    if max_payload_bytes is not None and size > max_payload_bytes:
        raise ProtocolError(f"payload size {size} exceeds limit {max_payload_bytes}")
    return RecordHeader(digest=digest, name=name, payload_size=size)


def read_payload(stream: BinaryIO, size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    return read_exact(stream, size, chunk_size)


def read_record(stream: BinaryIO, max_payload_bytes: int | None = None) -> FileRecord | None:
    header = read_header(stream, max_payload_bytes)
    if header is None:
        return None
    return FileRecord(header.digest, header.name, read_payload(stream, header.payload_size))


def write_payload(stream: BinaryIO, payload: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Write ``payload`` in ``chunk_size`` slices; returns the chunk count. Does not flush."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    view = memoryview(payload)
    chunks = 0
    for offset in range(0, len(view), chunk_size):
        stream.write(view[offset : offset + chunk_size])
        chunks += 1
    return chunks


def write_record(stream: BinaryIO, record: FileRecord, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    stream.write(encode_header(record.header))
    chunks = write_payload(stream, record.payload, chunk_size)
    stream.flush()
    return chunks


def write_terminator(stream: BinaryIO) -> None:
    stream.write(encode_terminator())
    stream.flush()
