from __future__ import annotations

import pytest

from support import RecordingInstrumentation

from cftp.config import Config
from cftp.metrics import InMemoryMetrics
from cftp.receiver import Receiver


@pytest.fixture
def out_dir(tmp_path):
    d = tmp_path / "out"
    d.mkdir()
    return d


@pytest.fixture
def receiver(out_dir):
    metrics = InMemoryMetrics()
    instr = RecordingInstrumentation()
    recv = Receiver(Config(host="127.0.0.1", port=0, output_dir=out_dir), instr, metrics)
    recv.serve_in_background()
    try:
        yield recv
    finally:
        recv.stop()


@pytest.fixture
def send_config(receiver):
    host, port = receiver.bound_address
    return Config(host=host, port=port)
