from __future__ import annotations

import random
import socket

import pytest

from support import RecordingInstrumentation, wait_for

from cftp.config import Config
from cftp.instrumentation import Hook
from cftp.metrics import InMemoryMetrics
from cftp.sender import SendError, Sender, send, send_file, send_files


def closed_port() -> int:
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def test_hello_world_end_to_end(tmp_path, out_dir, receiver, send_config):
    src = tmp_path / "hello.txt"
    src.write_bytes(b"hello-world!")
    sent = InMemoryMetrics()

    result = send_file(str(src), send_config, metrics=sent)

    assert result.ok
    assert result.name == "hello.txt"
    assert result.original_size == 12
    assert len(result.digest) == 64
    assert sent.files_sent == 1
    assert sent.transfer_latency_ms.count == 1
    assert wait_for(lambda: receiver.metrics.files_received == 1)
    assert (out_dir / "hello.txt").read_bytes() == b"hello-world!"
    assert receiver.metrics.checksum_mismatches == 0


def test_multi_chunk_payload(tmp_path, out_dir, receiver, send_config):
    data = random.Random(9).randbytes(20_000)
    src = tmp_path / "random.bin"
    src.write_bytes(data)
    instr = RecordingInstrumentation()

    result = send_file(str(src), send_config, instrumentation=instr)

    assert result.compressed_size > 8192 * 2
    assert instr.find(Hook.CHUNK_TRANSFER_COMPLETED)[0]["chunks"] == 3
    assert wait_for(lambda: receiver.metrics.files_received == 1)
    assert (out_dir / "random.bin").read_bytes() == data


def test_many_concurrent_senders(tmp_path, out_dir, receiver, send_config):
    rng = random.Random(4)
    expected = {}
    for i in range(12):
        p = tmp_path / f"f{i}.dat"
        data = rng.randbytes(rng.randrange(0, 40_000))
        p.write_bytes(data)
        expected[p.name] = data
    metrics = InMemoryMetrics()

    results = send_files([str(tmp_path / n) for n in expected], send_config, metrics=metrics)

    assert [r.name for r in results] == list(expected)
    assert all(r.ok for r in results)
    assert metrics.files_sent == 12
    assert wait_for(lambda: receiver.metrics.files_received == 12)
    for name, data in expected.items():
        assert (out_dir / name).read_bytes() == data


def test_send_files_uses_configured_inputs(tmp_path, out_dir, receiver, send_config):
    a = tmp_path / "a.txt"
    a.write_text("a")
    results = send_files(None, send_config.replace(input_files=(a,)))
    assert [r.ok for r in results] == [True]
    assert wait_for(lambda: (out_dir / "a.txt").exists())


def test_partial_failure_is_reported(tmp_path, out_dir, receiver, send_config):
    good = tmp_path / "good.txt"
    good.write_text("ok")
    results = send_files([str(tmp_path / "missing.txt"), str(good)], send_config)
    assert not results[0].ok
    assert "compress" in results[0].error
    assert results[1].ok
    assert wait_for(lambda: receiver.metrics.files_received == 1)


def test_receiver_accepts_again_after_session(tmp_path, out_dir, receiver, send_config):
    for i in range(3):
        p = tmp_path / f"seq{i}.txt"
        p.write_text(str(i))
        assert send_file(str(p), send_config).ok
    assert wait_for(lambda: receiver.metrics.files_received == 3)
    assert not receiver.instrumentation.find(Hook.CLIENT_DISCONNECTED)


def test_missing_file_aborts_before_connecting(tmp_path):
    instr = RecordingInstrumentation()
    with pytest.raises(SendError) as ei:
        send_file(str(tmp_path / "nope"), Config(host="127.0.0.1", port=closed_port()), instr)
    assert ei.value.stage == "compress"
    assert Hook.CONNECTION_ESTABLISHED not in instr.hooks()


def test_connect_failure(tmp_path):
    src = tmp_path / "x.txt"
    src.write_text("x")
    with pytest.raises(SendError) as ei:
        send_file(str(src), Config(host="127.0.0.1", port=closed_port()))
    assert ei.value.stage == "connect"
    assert isinstance(ei.value.cause, OSError)


def test_sender_is_single_use(tmp_path, receiver, send_config):
    src = tmp_path / "x.txt"
    src.write_text("x")
    s = Sender(send_config, str(src))
    s.run()
    with pytest.raises(RuntimeError):
        s.run()


def test_sender_hook_order(tmp_path, receiver, send_config):
    src = tmp_path / "x.txt"
    src.write_text("x" * 100)
    instr = RecordingInstrumentation()
    send_file(str(src), send_config, instrumentation=instr)
    assert instr.hooks() == [
        Hook.FILE_SEND_STARTED,
        Hook.COMPRESSION_STARTED,
        Hook.COMPRESSION_COMPLETED,
        Hook.CHECKSUM_STARTED,
        Hook.CHECKSUM_COMPLETED,
        Hook.CONNECTION_ESTABLISHED,
        Hook.CHUNK_TRANSFER_STARTED,
        Hook.CHUNK_TRANSFER_COMPLETED,
        Hook.FILE_SEND_COMPLETED,
    ]
    compressed = instr.find(Hook.COMPRESSION_COMPLETED)[0]
    assert compressed["original_size"] == 100
    assert compressed["compressed_size"] < 100


def test_receiver_stop(out_dir):
    from cftp.receiver import Receiver

    recv = Receiver(Config(host="127.0.0.1", port=0, output_dir=out_dir))
    t = recv.serve_in_background()
    recv.stop()
    assert not t.is_alive()


def test_send_to_address(tmp_path, out_dir, receiver):
    src = tmp_path / "addr.txt"
    src.write_text("by address")
    assert send(str(src), receiver.bound_address).ok
    assert wait_for(lambda: (out_dir / "addr.txt").exists())
