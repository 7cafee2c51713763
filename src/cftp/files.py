from __future__ import annotations

import logging
import os
import random
from pathlib import Path
from typing import List

log = logging.getLogger(__name__)

KIB = 1024

# (low, high) in KiB, inclusive low, exclusive high
SIZE_CLASSES_KIB = (
    (5, 101),
    (100, 10 * 1024),
    (10 * 1024, 100 * 1024),
)


def collect_files(root: str | os.PathLike) -> List[Path]:
    """All regular files under ``root``, recursively, in sorted order."""
    root = Path(root)
    if not root.exists():
        log.warning("input directory does not exist: %s", root)
        return []
    files = sorted(p for p in root.rglob("*") if p.is_file())
    log.info("found %d file(s) to send under %s", len(files), root)
    return files


def generate_files(
    folder: str | os.PathLike,
    count: int = 20,
    rng: random.Random | None = None,
    max_kib: int | None = None,
) -> List[Path]:
    """Create ``count`` files named ``file_<i>.bin`` of random small/medium/large size.

    Contents are random bytes, so generated files do not compress to nothing.
    """
    rng = rng or random.Random()
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)

    created = []
    for i in range(1, count + 1):
        low, high = rng.choice(SIZE_CLASSES_KIB)
        size_kib = rng.randrange(low, high)
        if max_kib is not None:
            size_kib = min(size_kib, max_kib)
        path = folder / f"file_{i}.bin"
        log.debug("generating %s (%.2f MiB)", path.name, size_kib / 1024.0)
        with open(path, "wb") as f:
            remaining = size_kib * KIB
            while remaining > 0:
                n = min(remaining, 1024 * KIB)
                f.write(rng.randbytes(n))
                remaining -= n
        created.append(path)

    log.info("generated %d file(s) in %s", len(created), folder)
    return created
