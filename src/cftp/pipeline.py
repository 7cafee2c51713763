"""Compression and digest primitives.

The digest is always taken over the *compressed* bytes so the receiver can
verify exactly what crossed the wire before paying for decompression.
"""
from __future__ import annotations

import gzip
import hashlib
import io
import zlib
from typing import BinaryIO

from .constants import DEFAULT_CHUNK_SIZE, DIGEST_ALGORITHM


class DigestUnavailableError(RuntimeError):
    pass


class DecompressError(Exception):
    pass


def ensure_digest_available() -> None:
    try:
        hashlib.new(DIGEST_ALGORITHM)
    except ValueError as e:
        raise DigestUnavailableError(f"{DIGEST_ALGORITHM} digest algorithm not available") from e


def compress(source: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    """Gzip everything readable from ``source`` into an in-memory buffer.

    The gzip header carries no file name and a zero mtime, so the output (and
    therefore its digest) depends only on the input bytes.
    """
    buf = io.BytesIO()
    with gzip.GzipFile(filename="", mode="wb", fileobj=buf, mtime=0) as gz:
        for chunk in iter(lambda: source.read(chunk_size), b""):
            gz.write(chunk)
    return buf.getvalue()


def compress_bytes(data: bytes) -> bytes:
    return compress(io.BytesIO(data))


def compress_file(path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    with open(path, "rb") as f:
        return compress(f, chunk_size)


def digest(data: bytes) -> str:
    return hashlib.new(DIGEST_ALGORITHM, data).hexdigest()


def decompress(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise DecompressError(f"malformed gzip stream: {e}") from e
