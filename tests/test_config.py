from __future__ import annotations

from pathlib import Path

import pytest

from cftp.config import Config


def test_defaults():
    c = Config()
    assert c.destination == ("localhost", 5050)
    assert c.output_dir == Path("server-out")
    assert c.chunk_size == 8192
    assert c.lock_target_paths


def test_paths_are_normalized():
    c = Config(output_dir="x", input_files=["a", "b"])
    assert c.output_dir == Path("x")
    assert c.input_files == (Path("a"), Path("b"))


def test_replace_returns_copy():
    c = Config()
    d = c.replace(port=6000)
    assert d.port == 6000
    assert c.port == 5050


@pytest.mark.parametrize(
    "changes",
    [{"port": -1}, {"port": 70000}, {"chunk_size": 0}, {"idle_timeout_ms": -5}, {"max_payload_bytes": -1}],
)
def test_validate_rejects(changes):
    with pytest.raises(ValueError):
        Config(**changes).validate()
