from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_HOST,
    DEFAULT_IDLE_TIMEOUT_MS,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PORT,
)


@dataclass(frozen=True, slots=True)
class Config:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    input_files: Tuple[Path, ...] = ()
    chunk_size: int = DEFAULT_CHUNK_SIZE
    idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS
    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    max_payload_bytes: int | None = None
    lock_target_paths: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "output_dir", Path(self.output_dir))
        object.__setattr__(self, "input_files", tuple(Path(p) for p in self.input_files))

    @property
    def destination(self) -> Tuple[str, int]:
        return (self.host, self.port)

    def replace(self, **changes) -> "Config":
        return dataclasses.replace(self, **changes)

    def validate(self) -> "Config":
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port out of range: {self.port}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive: {self.chunk_size}")
        if self.idle_timeout_ms < 0 or self.connect_timeout_ms < 0:
            raise ValueError("timeouts must not be negative")
        if self.max_payload_bytes is not None and self.max_payload_bytes < 0:
            raise ValueError("max_payload_bytes must not be negative")
        return self
